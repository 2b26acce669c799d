"""Tests for plans, the capability registry, step handlers and executors."""

import asyncio

import pytest
import requests
from github import GithubException

from conftest import FakeNotifier
from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.exceptions import RegistrationError
from issue_dispatch.execution import (
    AutonomousExecutor, CapabilityRegistry, CreatePullRequestHandler, HumanExecutor, HybridExecutor,
    NoopStepHandler, PlanRunner, PlanStep, ShellStepHandler, StepHandler, StepInput, StepOutput,
    build_default_registry, build_execution_context, build_plan
)
from issue_dispatch.models.common import (
    ApprovalDecision, ApprovalResponse, ExecutorKind, IssueType, Level, SourceType
)
from issue_dispatch.notifications.models import NotificationStatus, NotificationType


class ScriptedHandler(StepHandler):
    """Succeeds unless the step is listed in ``fail``."""

    def __init__(self, fail=(), delay=0.0):
        self.fail = set(fail)
        self.delay = delay
        self.inputs = []

    async def handle(self, step_input):
        self.inputs.append(step_input)
        if self.delay:
            await asyncio.sleep(self.delay)
        if step_input.step in self.fail:
            return StepOutput(success=False, output="boom", error=f"{step_input.step} broke")
        return StepOutput(success=True, output=f"{step_input.step} ok")

    @property
    def steps(self):
        return [step_input.step for step_input in self.inputs]


def step_input(tmp_path, **overrides):
    values = dict(
        job_id="job1", step="fix", step_type="fix", issue_id="github:acme/widgets#1",
        issue_title="Fix typo", repository="acme/widgets", branch_name="auto/fix-typo-job1",
        workspace=str(tmp_path / "ws"), max_files_changed=20,
    )
    values.update(overrides)
    return StepInput(**values)


@pytest.fixture
def context(make_job, tmp_path):
    job = make_job()
    return build_execution_context(job, DispatchConfig(workspace_root=str(tmp_path)))


def test_plans_end_with_tests_and_pull_request():
    for issue_type in IssueType:
        names = [step.name for step in build_plan(issue_type)]
        assert names[-2:] == ["run-full-test-suite", "create-pr"]
    assert [step.name for step in build_plan(IssueType.BUG)][:3] == ["analyze", "fix", "test"]


def test_context_constraints_follow_risk(make_job, tmp_path):
    config = DispatchConfig(workspace_root=str(tmp_path), branch_prefix="bot")
    low = build_execution_context(make_job(risk=Level.LOW), config)
    high = build_execution_context(make_job(risk=Level.HIGH), config)

    assert low.constraints.max_files_changed == 20 and not low.constraints.require_review
    assert high.constraints.max_files_changed == 3 and high.constraints.require_review
    assert low.branch_name.startswith("bot/fix-typo-in-readme-")
    assert low.workspace.startswith(str(tmp_path))


class TestPlanRunner:

    plan = [PlanStep("one", "one"), PlanStep("two", "two"), PlanStep("three", "three")]

    async def test_all_steps_succeed(self, context):
        handler = ScriptedHandler()
        result = await PlanRunner(CapabilityRegistry(handler)).run(self.plan, context)

        assert result.success
        assert handler.steps == ["one", "two", "three"]
        assert result.outputs == {"one": "one ok", "two": "two ok", "three": "three ok"}
        assert handler.inputs[2].previous_outputs == {"one": "one ok", "two": "two ok"}

    async def test_stops_at_first_failure(self, context):
        handler = ScriptedHandler(fail={"two"})
        result = await PlanRunner(CapabilityRegistry(handler)).run(self.plan, context)

        assert not result.success
        assert result.failed_step == "two"
        assert result.error == "two broke"
        assert [step.success for step in result.step_results] == [True, False]
        assert handler.steps == ["one", "two"]

    async def test_step_timeout(self, context):
        runner = PlanRunner(CapabilityRegistry(ScriptedHandler(delay=1.0)), step_timeout=0.05)
        result = await runner.run(self.plan, context)

        assert result.failed_step == "one"
        assert "timed out" in result.error

    async def test_missing_handler_fails_step(self, context):
        registry = CapabilityRegistry()
        registry.register("one", ScriptedHandler())
        result = await PlanRunner(registry).run(self.plan, context)

        assert result.failed_step == "two"
        assert "No handler registered" in result.error

    async def test_raising_handler_fails_step(self, context):
        class Exploding(StepHandler):
            async def handle(self, step_input):
                raise RuntimeError("exploded")

        result = await PlanRunner(CapabilityRegistry(Exploding())).run(self.plan, context)
        assert result.failed_step == "one"
        assert result.error == "exploded"

    async def test_cancellation_between_steps(self, context):
        handler = ScriptedHandler()
        result = await PlanRunner(CapabilityRegistry(handler)).run(
            self.plan, context, cancel_check=lambda: len(handler.inputs) >= 1
        )
        assert result.cancelled
        assert handler.steps == ["one"]


class TestRegistry:

    def test_sync_handle_is_rejected(self):
        class SyncHandler:
            input_schema = StepInput
            output_schema = StepOutput

            def handle(self, step_input):
                return StepOutput(success=True)

        with pytest.raises(RegistrationError):
            CapabilityRegistry().register("fix", SyncHandler())

    def test_bad_schema_is_rejected(self):
        class BadSchema(ScriptedHandler):
            input_schema = dict

        with pytest.raises(RegistrationError):
            CapabilityRegistry().register("fix", BadSchema())

    def test_resolve_falls_back_to_default(self):
        default = NoopStepHandler()
        registry = CapabilityRegistry(default)
        specific = ScriptedHandler()
        registry.register("fix", specific)

        assert registry.resolve("fix") is specific
        assert "fix" in registry and "docs" not in registry
        assert registry.resolve("docs") is default
        with pytest.raises(KeyError):
            CapabilityRegistry().resolve("docs")

    def test_default_registry_uses_configured_commands(self):
        registry = build_default_registry(DispatchConfig(step_commands={"fix": "make fix", "docs": ""}))

        assert isinstance(registry.resolve("fix"), ShellStepHandler)
        assert isinstance(registry.resolve("create-pr"), CreatePullRequestHandler)
        assert isinstance(registry.resolve("docs"), NoopStepHandler)


class TestShellStepHandler:

    async def test_success_captures_output(self, tmp_path):
        handler = ShellStepHandler('echo "$DISPATCH_STEP for $ISSUE_ID"')
        output = await handler.handle(step_input(tmp_path))

        assert output.success
        assert output.output.strip() == "fix for github:acme/widgets#1"
        assert (tmp_path / "ws").is_dir()

    async def test_nonzero_exit_fails(self, tmp_path):
        output = await ShellStepHandler("echo failing; exit 3").handle(step_input(tmp_path))

        assert not output.success
        assert output.error == "command exited with status 3"
        assert "failing" in output.output


class FakeGitHub:

    def __init__(self, fail_pull=False):
        self.fail_pull = fail_pull
        self.calls = []

    def create_pull_request(self, full_name, head, title, body, base=None, draft=False):
        self.calls.append(("create_pull_request", full_name, head, draft))
        if self.fail_pull:
            raise GithubException(422, {"message": "Validation Failed"}, None)
        return {"number": 5, "url": f"https://github.com/{full_name}/pull/5"}

    def add_comment(self, full_name, number, comment):
        self.calls.append(("add_comment", full_name, number, comment))
        return True

    def add_labels(self, full_name, number, labels):
        self.calls.append(("add_labels", full_name, number, labels))
        return True

    def assign_issue(self, full_name, number, assignees):
        self.calls.append(("assign_issue", full_name, number, assignees))
        return True


class TestCreatePullRequestHandler:

    async def test_opens_pull_request(self, tmp_path):
        github = FakeGitHub()
        output = await CreatePullRequestHandler(github).handle(step_input(tmp_path, step="create-pr"))

        assert output.success
        assert output.output == "https://github.com/acme/widgets/pull/5"
        assert github.calls == [("create_pull_request", "acme/widgets", "auto/fix-typo-job1", True)]

    async def test_github_refusal_fails_step(self, tmp_path):
        output = await CreatePullRequestHandler(FakeGitHub(fail_pull=True)).handle(step_input(tmp_path))
        assert not output.success
        assert "pull request creation failed" in output.error

    async def test_skipped_without_client(self, tmp_path):
        output = await CreatePullRequestHandler().handle(step_input(tmp_path))
        assert output.success
        assert output.output.startswith("skipped")


def approval(job, decision, text=""):
    return ApprovalResponse(job_id=job.id, decision=decision, text=text, responder="alice")


class TestHybridExecutor:

    def executor(self, handler, tmp_path):
        registry = CapabilityRegistry(handler)
        return HybridExecutor(AutonomousExecutor(registry, DispatchConfig(workspace_root=str(tmp_path))))

    async def test_rejection_runs_nothing(self, make_job, tmp_path):
        handler = ScriptedHandler()
        job = make_job(executor=ExecutorKind.HYBRID, approval_required=True)
        job.approval = approval(job, ApprovalDecision.REJECT, "not safe")

        result = await self.executor(handler, tmp_path).execute(job)
        assert not result.success
        assert result.error == "not safe"
        assert handler.inputs == []

    async def test_modification_reaches_every_step(self, make_job, tmp_path):
        handler = ScriptedHandler()
        job = make_job(executor=ExecutorKind.HYBRID, approval_required=True)
        job.approval = approval(job, ApprovalDecision.MODIFY, "keep the public API")

        result = await self.executor(handler, tmp_path).execute(job)
        assert result.success
        assert {step_input.instructions for step_input in handler.inputs} == {"keep the public API"}

    async def test_approval_runs_plan_without_instructions(self, make_job, tmp_path):
        handler = ScriptedHandler()
        job = make_job(executor=ExecutorKind.HYBRID, approval_required=True)
        job.approval = approval(job, ApprovalDecision.APPROVE)

        result = await self.executor(handler, tmp_path).execute(job)
        assert result.success
        assert handler.inputs[0].instructions is None

    async def test_missing_approval_fails(self, make_job, tmp_path):
        handler = ScriptedHandler()
        result = await self.executor(handler, tmp_path).execute(make_job())
        assert not result.success
        assert handler.inputs == []


class TestHumanExecutor:

    async def test_github_hand_off(self, make_issue, make_job, notifier):
        github = FakeGitHub()
        issue = make_issue(title="Possible SQL injection in login", raw_data={"number": 7})
        job = make_job(issue=issue, executor=ExecutorKind.HUMAN)

        executor = HumanExecutor(notifier, github_client=github, assignees=["octocat"])
        result = await executor.execute(job)

        assert result.success
        assert result.details == "handed off"
        calls = [call[0] for call in github.calls]
        assert calls == ["add_comment", "add_labels", "assign_issue"]
        assert job.id in github.calls[0][3]
        assert github.calls[1][3] == ["needs-human"]
        assert notifier.types == [NotificationType.HUMAN_ASSIGNMENT]

    async def test_connection_errors_do_not_fail_hand_off(self, make_issue, make_job, notifier):
        class UnreachableGitHub(FakeGitHub):
            def add_comment(self, full_name, number, comment):
                raise requests.ConnectionError("connection reset")

        github = UnreachableGitHub()
        issue = make_issue(raw_data={"number": 9})
        job = make_job(issue=issue, executor=ExecutorKind.HUMAN)

        result = await HumanExecutor(notifier, github_client=github).execute(job)
        assert result.success
        assert result.details == "handed off (issue comment not posted)"
        assert [call[0] for call in github.calls] == ["add_labels"]
        assert notifier.types == [NotificationType.HUMAN_ASSIGNMENT]

    async def test_delivery_problems_do_not_fail_hand_off(self, make_issue, make_job):
        issue = make_issue(source_type=SourceType.MANUAL)
        job = make_job(issue=issue, executor=ExecutorKind.HUMAN)

        result = await HumanExecutor(FakeNotifier(status=NotificationStatus.FAILED)).execute(job)
        assert result.success
        assert "issue comment not posted" in result.details
        assert "team notification not delivered" in result.details
