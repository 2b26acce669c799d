"""Default step handlers."""

import asyncio
import logging
import os
from typing import Dict, Optional

from github import GithubException

from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.exceptions import ExecutionStepError
from .registry import CapabilityRegistry, StepHandler, StepInput, StepOutput

OUTPUT_LIMIT = 4000


class NoopStepHandler(StepHandler):
    """Stands in for step types that have no command configured."""

    async def handle(self, step_input: StepInput) -> StepOutput:
        return StepOutput(success=True, output="skipped: no command configured")


class ShellStepHandler(StepHandler):
    """Runs a configured shell command in the job workspace.

    The command sees the job through ``ISSUE_*`` and ``DISPATCH_*``
    environment variables. Exit status 0 means success.
    """

    def __init__(self, command: str):
        self.command = command
        self.logger = logging.getLogger(__name__)

    def _environment(self, step_input: StepInput) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({
            'ISSUE_ID': step_input.issue_id,
            'ISSUE_TITLE': step_input.issue_title,
            'ISSUE_BODY': step_input.issue_body,
            'ISSUE_REPOSITORY': step_input.repository or '',
            'DISPATCH_JOB_ID': step_input.job_id,
            'DISPATCH_STEP': step_input.step,
            'DISPATCH_BRANCH': step_input.branch_name,
            'DISPATCH_MAX_FILES_CHANGED': str(step_input.max_files_changed),
            'DISPATCH_REQUIRE_REVIEW': 'true' if step_input.require_review else 'false',
            'DISPATCH_INSTRUCTIONS': step_input.instructions or '',
        })
        return env

    async def handle(self, step_input: StepInput) -> StepOutput:
        try:
            os.makedirs(step_input.workspace, exist_ok=True)
        except OSError as e:
            raise ExecutionStepError(step_input.step, f"cannot create workspace: {e}") from e

        process = await asyncio.create_subprocess_shell(
            self.command,
            cwd=step_input.workspace,
            env=self._environment(step_input),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            # Timeouts and cancellation arrive here; never leave the child running
            process.kill()
            await process.wait()
            raise

        output = stdout.decode(errors='replace')[-OUTPUT_LIMIT:]
        if process.returncode != 0:
            self.logger.warning(f"Step {step_input.step} exited with {process.returncode}")
            return StepOutput(success=False, output=output,
                              error=f"command exited with status {process.returncode}")
        return StepOutput(success=True, output=output)


class CreatePullRequestHandler(StepHandler):
    """Opens a pull request for the job branch through the GitHub client."""

    def __init__(self, github_client=None):
        self.github_client = github_client
        self.logger = logging.getLogger(__name__)

    async def handle(self, step_input: StepInput) -> StepOutput:
        if self.github_client is None or not step_input.repository:
            return StepOutput(success=True, output="skipped: no GitHub client for this repository")

        body = (
            f"Automated change for issue {step_input.issue_id}.\n\n"
            f"{step_input.previous_outputs.get('run-full-test-suite', '')}".rstrip()
        )
        try:
            pull = await asyncio.to_thread(
                self.github_client.create_pull_request,
                step_input.repository,
                step_input.branch_name,
                step_input.issue_title,
                body,
                None,
                step_input.require_review,
            )
        except GithubException as e:
            return StepOutput(success=False, error=f"pull request creation failed: {e}")

        return StepOutput(success=True, output=pull['url'], data=pull)


def build_default_registry(config: DispatchConfig, github_client=None,
                           default_handler: Optional[StepHandler] = None) -> CapabilityRegistry:
    """Registry with a shell handler per configured step command.

    Step types without a command fall back to ``NoopStepHandler`` and
    ``create-pr`` uses the GitHub client unless a command overrides it.
    """
    registry = CapabilityRegistry(default_handler=default_handler or NoopStepHandler())
    registry.register('create-pr', CreatePullRequestHandler(github_client))
    for step_type, command in config.step_commands.items():
        if command:
            registry.register(step_type, ShellStepHandler(command))
    return registry
