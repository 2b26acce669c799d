"""Execution plans and the sequential plan runner."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from issue_dispatch.models.common import ExecutionResult, IssueType, StepResult
from .base import ExecutionContext
from .registry import CapabilityRegistry


@dataclass(frozen=True)
class PlanStep:
    """One step of an execution plan."""
    name: str
    step_type: str
    description: str = ""


_PLAN_STEPS: Dict[IssueType, Tuple[Tuple[str, str], ...]] = {
    IssueType.BUG: (
        ('analyze', 'Reproduce the failure and locate its cause'),
        ('fix', 'Apply the smallest change that fixes the cause'),
        ('test', 'Add or update a regression test'),
    ),
    IssueType.FEATURE: (
        ('design', 'Outline the change and affected modules'),
        ('implement', 'Implement the feature'),
        ('test', 'Cover the feature with tests'),
        ('docs', 'Document the new behavior'),
    ),
    IssueType.DOCUMENTATION: (
        ('update-docs', 'Update the documentation'),
    ),
    IssueType.TESTING: (
        ('write-tests', 'Write the requested tests'),
    ),
    IssueType.GENERAL: (
        ('analyze', 'Work out what the issue asks for'),
        ('fix', 'Make the change'),
    ),
}

_CLOSING_STEPS = (
    ('run-full-test-suite', 'Run the full test suite'),
    ('create-pr', 'Push the branch and open a pull request'),
)


def build_plan(issue_type: IssueType) -> List[PlanStep]:
    """Build the ordered plan for an issue type.

    Every plan ends by running the full test suite and opening a pull request.
    """
    steps = _PLAN_STEPS.get(issue_type, _PLAN_STEPS[IssueType.GENERAL]) + _CLOSING_STEPS
    return [PlanStep(name=name, step_type=name, description=description) for name, description in steps]


class PlanRunner:
    """Runs plan steps strictly in order, stopping at the first failure.

    There is no automatic retry inside a run; retrying a job creates a new one.
    """

    def __init__(self, registry: CapabilityRegistry, step_timeout: float = 600.0):
        self.registry = registry
        self.step_timeout = step_timeout
        self.logger = logging.getLogger(__name__)

    async def run(self, plan: List[PlanStep], context: ExecutionContext,
                  cancel_check: Optional[Callable[[], bool]] = None) -> ExecutionResult:
        """Run a plan against an execution context.

        Args:
            plan: Steps to run
            context: Job context; each step's output is stored in ``context.outputs``
            cancel_check: Returns True once the job should stop

        Returns:
            The run outcome, with the results of every step that ran
        """
        step_results: List[StepResult] = []

        for step in plan:
            if cancel_check is not None and cancel_check():
                self.logger.info(f"Job {context.job_id} cancelled before step {step.name}")
                return ExecutionResult(
                    success=False,
                    details=f"cancelled before {step.name}",
                    error="cancelled",
                    step_results=step_results,
                    outputs=dict(context.outputs),
                    cancelled=True,
                )

            result = await self._run_step(step, context)
            step_results.append(result)

            if not result.success:
                self.logger.warning(f"Job {context.job_id} failed at step {step.name}: {result.error}")
                return ExecutionResult(
                    success=False,
                    details=f"step {step.name} failed",
                    error=result.error,
                    failed_step=step.name,
                    step_results=step_results,
                    outputs=dict(context.outputs),
                )

            context.outputs[step.name] = result.output

        return ExecutionResult(
            success=True,
            details=f"completed {len(step_results)} steps",
            step_results=step_results,
            outputs=dict(context.outputs),
        )

    async def _run_step(self, step: PlanStep, context: ExecutionContext) -> StepResult:
        started = time.monotonic()

        def elapsed_ms() -> float:
            return round((time.monotonic() - started) * 1000, 1)

        try:
            handler = self.registry.resolve(step.step_type)
        except KeyError as e:
            return StepResult(step=step.name, success=False, error=str(e))

        try:
            step_input = handler.input_schema(
                job_id=context.job_id,
                step=step.name,
                step_type=step.step_type,
                issue_id=context.issue.id,
                issue_title=context.issue.title,
                issue_body=context.issue.body or '',
                repository=context.issue.repository,
                branch_name=context.branch_name,
                workspace=context.workspace,
                max_files_changed=context.constraints.max_files_changed,
                require_review=context.constraints.require_review,
                instructions=context.instructions,
                previous_outputs=dict(context.outputs),
            )
        except ValidationError as e:
            return StepResult(step=step.name, success=False, error=f"invalid step input: {e}")

        self.logger.info(f"Job {context.job_id} running step {step.name}")
        try:
            raw_output = await asyncio.wait_for(handler.handle(step_input), timeout=self.step_timeout)
        except asyncio.TimeoutError:
            return StepResult(step=step.name, success=False, duration_ms=elapsed_ms(),
                              error=f"step timed out after {self.step_timeout}s")
        except Exception as e:
            self.logger.error(f"Step {step.name} of job {context.job_id} raised: {e}", exc_info=True)
            return StepResult(step=step.name, success=False, duration_ms=elapsed_ms(), error=str(e))

        try:
            output = handler.output_schema.model_validate(
                raw_output.model_dump() if hasattr(raw_output, 'model_dump') else raw_output
            )
        except ValidationError as e:
            return StepResult(step=step.name, success=False, duration_ms=elapsed_ms(),
                              error=f"invalid step output: {e}")

        return StepResult(
            step=step.name,
            success=output.success,
            output=output.output,
            duration_ms=elapsed_ms(),
            error=output.error if not output.success else None,
        )
