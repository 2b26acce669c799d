"""Human approval gate for supervised jobs."""

import asyncio
import logging
from typing import Dict, Optional, Set

from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.exceptions import ApprovalTimeoutError
from issue_dispatch.models.common import ApprovalDecision, ApprovalResponse, Job
from issue_dispatch.notifications.models import NotificationContext, NotificationType
from .commands import parse_approval_command


class ApprovalGate:
    """Sends approval requests and collects exactly one response per job.

    A job's request stays open until a response arrives, it times out, or
    it is cancelled. Once closed, further responses are refused. Nothing is
    ever approved by default.
    """

    def __init__(self, notification_manager, config: Optional[DispatchConfig] = None):
        """Initialize the gate.

        Args:
            notification_manager: Object with an async ``send_notification``
            config: Dispatch configuration (timeout and reviewer channel)
        """
        self.notification_manager = notification_manager
        self.config = config or DispatchConfig()
        self.logger = logging.getLogger(__name__)
        self._pending: Dict[str, asyncio.Future] = {}
        self._closed: Set[str] = set()

    @property
    def timeout_seconds(self) -> float:
        return self.config.approval_timeout_ms / 1000.0

    @property
    def pending_job_ids(self) -> Set[str]:
        return {job_id for job_id, future in self._pending.items() if not future.done()}

    async def request(self, job: Job, recipient: Optional[str] = None) -> None:
        """Open an approval request for a job and notify reviewers.

        Args:
            job: Job awaiting approval
            recipient: Reviewer channel, defaults to the team recipient
        """
        if job.id in self._pending or job.id in self._closed:
            self.logger.warning(f"Approval already requested for job {job.id}")
            return

        self._pending[job.id] = asyncio.get_running_loop().create_future()

        context = NotificationContext(job=job, additional_data={
            'proposed_action': self._describe_action(job),
            'timeout_minutes': int(self.timeout_seconds // 60),
        })
        results = await self.notification_manager.send_notification(
            NotificationType.APPROVAL_REQUEST,
            recipient or self.config.team_recipient,
            context,
        )
        if not results:
            self.logger.warning(f"Approval request for job {job.id} reached no notification channel")
        self.logger.info(f"Approval requested for job {job.id}")

    def respond(self, job_id: str, decision: ApprovalDecision, text: str = '',
                responder: Optional[str] = None) -> bool:
        """Record a reviewer's response.

        Returns:
            True if the response was accepted, False for unknown, closed or
            already-answered jobs
        """
        future = self._pending.get(job_id)
        if future is None or future.done():
            self.logger.info(f"Ignoring {decision.value} for job {job_id}: no open approval request")
            return False

        response = ApprovalResponse(job_id=job_id, decision=decision, text=text, responder=responder)
        future.set_result(response)
        self.logger.info(f"Job {job_id} received {decision.value} from {responder or 'unknown'}")
        return True

    def handle_comment(self, comment: str, responder: Optional[str] = None) -> Optional[ApprovalResponse]:
        """Parse a comment and apply the command it holds, if any."""
        command = parse_approval_command(comment)
        if command is None:
            return None
        future = self._pending.get(command.job_id)
        if not self.respond(command.job_id, command.decision, command.text, responder):
            return None
        return future.result()

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> ApprovalResponse:
        """Wait for the response to a job's approval request.

        Args:
            job_id: Job whose response to wait for
            timeout: Seconds to wait, defaults to the configured approval timeout

        Returns:
            The reviewer's response

        Raises:
            ApprovalTimeoutError: If no response arrives in time
            KeyError: If no approval was requested for the job
        """
        future = self._pending[job_id]
        timeout = self.timeout_seconds if timeout is None else timeout

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            if future.done() and not future.cancelled():
                return future.result()
            future.cancel()
            raise ApprovalTimeoutError(job_id, timeout)
        finally:
            self._close(job_id)

    def cancel(self, job_id: str) -> bool:
        """Close an open request without a response."""
        future = self._pending.get(job_id)
        if future is None or future.done():
            return False
        future.cancel()
        self._close(job_id)
        return True

    def _close(self, job_id: str) -> None:
        self._pending.pop(job_id, None)
        self._closed.add(job_id)

    @staticmethod
    def _describe_action(job: Job) -> str:
        decision = job.dispatch_decision
        return (f"run the {job.issue.type.value} plan with the {decision.executor.value} executor "
                f"in {decision.mode.value} mode at {decision.priority.value} priority")
