"""Executor that runs an issue's plan without human involvement."""

from typing import Optional

from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.models.common import ExecutionResult, ExecutorKind, Job
from .base import Executor, build_execution_context
from .plan import PlanRunner, build_plan
from .registry import CapabilityRegistry


class AutonomousExecutor(Executor):
    """Builds the job's context and plan, then runs the plan."""

    kind = ExecutorKind.CLAUDE_CODE

    def __init__(self, registry: CapabilityRegistry, config: Optional[DispatchConfig] = None):
        super().__init__()
        self.config = config or DispatchConfig()
        self.registry = registry
        self.runner = PlanRunner(registry, step_timeout=self.config.step_timeout_seconds)

    async def execute(self, job: Job, instructions: Optional[str] = None) -> ExecutionResult:
        context = build_execution_context(job, self.config, instructions=instructions)
        plan = build_plan(job.issue.type)

        self.logger.info(
            f"Running {len(plan)}-step plan for job {job.id} on branch {context.branch_name} "
            f"(max files {context.constraints.max_files_changed})"
        )
        return await self.runner.run(plan, context, cancel_check=lambda: job.cancel_requested)
