"""Executor for supervised jobs that passed the approval gate."""

from issue_dispatch.models.common import ApprovalDecision, ExecutionResult, ExecutorKind, Job
from .autonomous import AutonomousExecutor
from .base import Executor


class HybridExecutor(Executor):
    """Runs the autonomous plan only after a reviewer's go-ahead.

    A rejection ends the job without running anything. A modification is
    passed to every step as extra instructions.
    """

    kind = ExecutorKind.HYBRID

    def __init__(self, autonomous: AutonomousExecutor):
        super().__init__()
        self.autonomous = autonomous

    async def execute(self, job: Job) -> ExecutionResult:
        response = job.approval
        if response is None:
            return ExecutionResult(success=False, details="not approved",
                                   error="no approval response recorded")

        if response.decision == ApprovalDecision.REJECT:
            self.logger.info(f"Job {job.id} rejected by {response.responder or 'reviewer'}")
            return ExecutionResult(success=False, details="rejected by reviewer",
                                   error=response.text or "rejected")

        instructions = response.text if response.decision == ApprovalDecision.MODIFY else None
        if instructions:
            self.logger.info(f"Job {job.id} runs with reviewer instructions")
        return await self.autonomous.execute(job, instructions=instructions)
