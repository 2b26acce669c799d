"""Dispatcher: evaluates issues, creates jobs and drives them to a terminal state."""

import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from issue_dispatch.config.settings import SystemConfig
from issue_dispatch.exceptions import ApprovalTimeoutError, DispatchError, EvaluationError
from issue_dispatch.models.common import (
    ApprovalDecision, ApprovalResponse, DispatchDecision, Evaluation, ExecutionMode, ExecutionResult,
    ExecutorKind, Issue, Job, JobStatus, Level, Score, Suitability, SourceType
)
from issue_dispatch.evaluation import IssueAssessor, RuleEngine
from issue_dispatch.approval import ApprovalGate
from issue_dispatch.execution.base import Executor
from issue_dispatch.notifications.models import NotificationContext, NotificationType
from issue_dispatch.sources.dedup import EventDeduplicator
from issue_dispatch.utils.logging import StructuredLogger
from .decision import make_dispatch_decision
from .queue import JobQueue
from .state import can_transition, transition

TERMINAL_AUDIT_EVENTS = {
    JobStatus.COMPLETED: 'job_completed',
    JobStatus.FAILED: 'job_failed',
    JobStatus.ERROR: 'job_error',
    JobStatus.CANCELLED: 'job_cancelled',
    JobStatus.APPROVAL_TIMEOUT: 'approval_timeout',
}


class Dispatcher:
    """Single entry point from ingested issues to finished jobs.

    Everything runs on one event loop. ``evaluate_and_dispatch`` is the only
    way new jobs enter the system; ``run`` drains the queue within the
    concurrency limit and each job runs in its own task. Whatever happens
    inside a job is caught at the job boundary and recorded on the job.
    """

    def __init__(
        self,
        executors: Dict[ExecutorKind, Executor],
        approval_gate: ApprovalGate,
        config: Optional[SystemConfig] = None,
        assessor: Optional[IssueAssessor] = None,
        rule_engine: Optional[RuleEngine] = None,
        queue: Optional[JobQueue] = None,
        audit_log=None,
        deduplicator: Optional[EventDeduplicator] = None,
        notification_manager=None,
        github_client=None,
    ):
        self.config = config or SystemConfig()
        self.executors = executors
        self.approval_gate = approval_gate
        self.assessor = assessor or IssueAssessor(self.config.scoring)
        self.rule_engine = rule_engine or RuleEngine()
        self.queue = queue if queue is not None else JobQueue(self.config.dispatch.max_concurrent_jobs)
        self.audit_log = audit_log
        self.deduplicator = deduplicator if deduplicator is not None else EventDeduplicator()
        self.notification_manager = notification_manager
        self.github_client = github_client

        self.logger = logging.getLogger(__name__)
        self.structured_logger = StructuredLogger(__name__)

        self.jobs: Dict[str, Job] = {}
        self._job_tasks: Dict[str, asyncio.Task] = {}
        self._approval_tasks: Dict[str, asyncio.Task] = {}
        self._wakeup: Optional[asyncio.Event] = None
        self._running = False

    # Ingestion

    async def evaluate_and_dispatch(self, issue: Issue) -> Optional[Job]:
        """Evaluate an issue and create its job.

        Returns:
            The new job, or None when the issue's event was already ingested
        """
        if not self.deduplicator.check_and_mark(issue):
            self.logger.info(f"Skipping duplicate event {issue.dedup_key} for issue {issue.id}")
            return None

        job = self._create_job(issue)
        await self._dispatch(job)
        return job

    async def retry_job(self, job_id: str) -> Job:
        """Re-dispatch a finished job as a new job with a fresh evaluation.

        Raises:
            KeyError: If the job is unknown
            DispatchError: If the job has not finished
        """
        previous = self.jobs[job_id]
        if not previous.status.is_terminal:
            raise DispatchError(f"Job {job_id} is {previous.status.value}; only finished jobs can be retried")

        job = self._create_job(previous.issue, attempt=previous.attempt + 1, previous_job_id=previous.id)
        self.logger.info(f"Retrying job {previous.id} as {job.id} (attempt {job.attempt})")
        await self._dispatch(job)
        return job

    def _create_job(self, issue: Issue, attempt: int = 1, previous_job_id: Optional[str] = None) -> Job:
        evaluation = self._evaluate(issue)
        decision = make_dispatch_decision(evaluation, issue)
        job = Job(
            id=uuid.uuid4().hex,
            issue=issue,
            evaluation=evaluation.snapshot(),
            dispatch_decision=decision,
            attempt=attempt,
            previous_job_id=previous_job_id,
        )
        self.jobs[job.id] = job
        return job

    def _evaluate(self, issue: Issue) -> Evaluation:
        """Assess and run the rules; any failure yields an uncertain evaluation."""
        scores = None
        try:
            scores = self.assessor.assess(issue)
            return self.rule_engine.evaluate(issue, *scores)
        except EvaluationError as e:
            self.logger.warning(f"Evaluation of {issue.id} is uncertain: {e}")
            complexity, confidence, risk = scores or (
                Score(1.0, Level.HIGH), Score(0.0, Level.LOW), Score(1.0, Level.HIGH)
            )
            return Evaluation(
                complexity=complexity,
                confidence=confidence,
                risk=risk,
                suitability=Suitability.UNKNOWN,
                reasoning=[f"Evaluation failed: {e}"],
                uncertain=True,
            )

    async def _dispatch(self, job: Job) -> None:
        decision = job.dispatch_decision
        self.structured_logger.log_dispatch(job.id, job.issue.id, decision.executor.value,
                                            mode=decision.mode.value, priority=decision.priority.value,
                                            approval_required=decision.approval_required)
        self._audit('job_dispatched', job,
                    executor=decision.executor.value,
                    mode=decision.mode.value,
                    priority=decision.priority.value,
                    approval_required=decision.approval_required,
                    reason=decision.reason,
                    attempt=job.attempt,
                    previous_job_id=job.previous_job_id,
                    evaluation=job.evaluation.to_dict())

        if decision.approval_required:
            self._transition(job, JobStatus.AWAITING_APPROVAL)
            await self.approval_gate.request(job)
            self._audit('approval_requested', job, timeout_seconds=self.approval_gate.timeout_seconds)
            self._approval_tasks[job.id] = asyncio.create_task(
                self._await_approval(job), name=f"approval-{job.id[:8]}"
            )
        else:
            await self._enqueue(job)

    async def _enqueue(self, job: Job) -> None:
        await self.queue.enqueue(job)
        self._wake()

    # Approval

    async def _await_approval(self, job: Job) -> None:
        try:
            response = await self.approval_gate.wait(job.id)
        except ApprovalTimeoutError as e:
            if job.status != JobStatus.AWAITING_APPROVAL:
                return
            job.error = str(e)
            self._transition(job, JobStatus.APPROVAL_TIMEOUT)
            await self._alert_operators(
                f"Approval timed out for job {job.id}",
                f"No reviewer answered within {e.timeout_seconds:.0f}s. The job was not executed "
                f"and the issue was handed to a human.",
                job,
            )
            await self._finish(job)
            await self.escalate_to_human(job, "approval timed out")
            return
        except asyncio.CancelledError:
            if job.cancel_requested:
                return
            raise
        finally:
            self._approval_tasks.pop(job.id, None)

        await self.handle_approval(job, response)

    async def escalate_to_human(self, job: Job, reason: str) -> Job:
        """Hand a finished job's issue to the human executor as a new job."""
        escalated = Job(
            id=uuid.uuid4().hex,
            issue=job.issue,
            evaluation=job.evaluation.snapshot(),
            dispatch_decision=DispatchDecision(
                executor=ExecutorKind.HUMAN,
                mode=ExecutionMode.MANUAL,
                priority=job.priority,
                approval_required=False,
                reason=f"{reason}; escalated to a human",
            ),
            attempt=job.attempt + 1,
            previous_job_id=job.id,
        )
        self.jobs[escalated.id] = escalated
        self.logger.warning(f"Escalating issue {job.issue.id} from job {job.id} to human job {escalated.id}: {reason}")
        self._audit('job_escalated', job, escalated_job_id=escalated.id, reason=reason)
        await self._dispatch(escalated)
        return escalated

    async def handle_approval(self, job: Job, response: ApprovalResponse) -> None:
        """Act on a reviewer's response to an approval request."""
        if job.status != JobStatus.AWAITING_APPROVAL:
            self.logger.warning(f"Ignoring approval response for job {job.id} in status {job.status.value}")
            return

        job.approval = response
        self._audit('approval_response', job, decision=response.decision.value,
                    responder=response.responder, text=response.text)

        if response.decision == ApprovalDecision.REJECT:
            executor = self.executors[job.dispatch_decision.executor]
            try:
                job.result = await executor.execute(job)
            except Exception as e:
                self.logger.error(f"Executor failed handling rejection of job {job.id}: {e}", exc_info=True)
                job.result = ExecutionResult(success=False, details="rejected by reviewer", error=str(e))
            job.error = job.result.error or "rejected by reviewer"
            self._transition(job, JobStatus.FAILED)
            await self._finish(job)
            return

        # Approved jobs wait for a free slot like any other
        await self._enqueue(job)

    # Queue processing

    async def process_queue_once(self) -> List[str]:
        """Start as many queued jobs as there are free slots.

        Returns:
            Ids of the jobs started
        """
        started = []
        for job in await self.queue.take_ready():
            if job.status.is_terminal:
                await self.queue.release(job.id)
                continue
            self._job_tasks[job.id] = asyncio.create_task(self._run_job(job), name=f"job-{job.id[:8]}")
            started.append(job.id)
        if started:
            self.logger.debug(f"Started {len(started)} jobs; {self.queue.depth} waiting")
        return started

    async def run(self) -> None:
        """Process the queue until ``stop`` is called."""
        self._running = True
        self._wakeup = asyncio.Event()
        interval = self.config.dispatch.queue_poll_interval
        self.logger.info(f"Dispatcher running with {self.queue.max_concurrent_jobs} job slots")

        while self._running:
            try:
                await self.process_queue_once()
            except Exception as e:
                self.logger.error(f"Error processing job queue: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    def stop(self) -> None:
        self._running = False
        self._wake()

    async def shutdown(self) -> None:
        """Stop processing and cancel in-flight job and approval tasks."""
        self.stop()
        tasks = list(self._job_tasks.values()) + list(self._approval_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("Dispatcher shut down")

    async def wait_idle(self) -> None:
        """Wait for every running job task to finish."""
        while self._job_tasks:
            await asyncio.gather(*list(self._job_tasks.values()), return_exceptions=True)

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def _run_job(self, job: Job) -> None:
        try:
            if job.dispatch_decision.approval_required and not self._approved(job):
                raise DispatchError(f"Job {job.id} requires approval and has none")

            if job.cancel_requested:
                self._transition(job, JobStatus.CANCELLED)
                return

            self._transition(job, JobStatus.EXECUTING)
            executor = self.executors[job.dispatch_decision.executor]
            result = await executor.execute(job)
            job.result = result

            if result.cancelled:
                self._transition(job, JobStatus.CANCELLED)
            elif result.success:
                self._transition(job, JobStatus.COMPLETED)
            else:
                job.error = result.error or result.details or "execution failed"
                self._transition(job, JobStatus.FAILED)
        except Exception as e:
            self.logger.error(f"Job {job.id} raised: {e}", exc_info=True)
            job.error = str(e) or e.__class__.__name__
            if can_transition(job.status, JobStatus.ERROR):
                self._transition(job, JobStatus.ERROR)
            elif job.status == JobStatus.AWAITING_APPROVAL:
                self._transition(job, JobStatus.FAILED)
        finally:
            await self.queue.release(job.id)
            self._job_tasks.pop(job.id, None)
            self._wake()
            if job.status.is_terminal:
                await self._finish(job)

    @staticmethod
    def _approved(job: Job) -> bool:
        return job.approval is not None and job.approval.decision in (
            ApprovalDecision.APPROVE, ApprovalDecision.MODIFY
        )

    # Cancellation

    async def cancel(self, job_id: str) -> bool:
        """Request cancellation of a job.

        Waiting jobs are cancelled at once; an executing job stops before its
        next plan step.

        Returns:
            False for unknown or finished jobs
        """
        job = self.jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return False

        job.cancel_requested = True
        self.logger.info(f"Cancellation requested for job {job_id} ({job.status.value})")

        if job.status == JobStatus.EXECUTING:
            return True

        removed = await self.queue.remove(job_id)
        if job.status == JobStatus.AWAITING_APPROVAL:
            self.approval_gate.cancel(job_id)
        elif not removed:
            # Already handed to a task; the plan runner sees the flag
            return True

        self._transition(job, JobStatus.CANCELLED)
        await self._finish(job)
        return True

    # Restart recovery

    async def recover_interrupted_jobs(self) -> List[str]:
        """Close out jobs a previous run left unfinished and alert operators.

        Jobs are held in memory while their events stay marked as seen, so a
        job that was queued, awaiting approval or executing at shutdown will
        never be picked up again. Each one is recorded as interrupted and
        reported to operators for a human to take over.

        Returns:
            Ids of the interrupted jobs
        """
        if self.audit_log is None:
            return []

        interrupted = []
        for entry in self.audit_log.unfinished_jobs():
            job_id = entry['job_id']
            if job_id in self.jobs:
                continue
            ids = dict(job_id=job_id, issue_id=entry['issue_id'], source_type=entry['source_type'])
            self._audit('job_interrupted', last_status=entry['status'], executor=entry['executor'], **ids)
            await self._alert_operators(
                f"Job {job_id} was interrupted by a restart",
                f"Issue {entry['issue_id']} was {entry['status']} with executor {entry['executor']} "
                f"when the service stopped. It will not be dispatched again; please handle it by hand.",
                **ids,
            )
            interrupted.append(job_id)

        if interrupted:
            self.logger.warning(f"Recovered {len(interrupted)} jobs interrupted by the last shutdown")
        return interrupted

    # Bookkeeping

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def status(self) -> Dict[str, object]:
        counts: Dict[str, int] = {}
        for job in self.jobs.values():
            counts[job.status.value] = counts.get(job.status.value, 0) + 1
        data = dict(self.queue.snapshot())
        data.update({
            'jobs_by_status': counts,
            'pending_approvals': len(self.approval_gate.pending_job_ids),
            'running': self._running,
        })
        return data

    def _transition(self, job: Job, target: JobStatus) -> None:
        previous = transition(job, target)
        self.structured_logger.log_job_transition(job.id, previous.value, target.value)
        self._audit('job_transition', job, from_status=previous.value, to_status=target.value)

    def _audit(self, event_type: str, job: Optional[Job] = None, **payload) -> None:
        if self.audit_log is not None:
            self.audit_log.record(event_type, job=job, **payload)

    async def _finish(self, job: Job) -> None:
        """Record a terminal job and tell the people who care."""
        result = job.result
        self._audit(
            TERMINAL_AUDIT_EVENTS[job.status], job,
            executor=job.dispatch_decision.executor.value,
            duration_seconds=job.duration_seconds,
            error=job.error,
            failed_step=result.failed_step if result else None,
            steps=[step.step for step in result.step_results] if result else [],
        )

        ran_plan = result is not None and bool(result.step_results)
        history = getattr(self.assessor, 'history', None)
        if ran_plan and history is not None and job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            history.record(job.issue, job.status == JobStatus.COMPLETED)

        await self._post_outcome_comment(job)

        if self.notification_manager is not None:
            context = NotificationContext(job=job, additional_data={'outcome': self._describe_outcome(job)})
            try:
                await self.notification_manager.send_notification(
                    NotificationType.JOB_OUTCOME, self.config.dispatch.team_recipient, context, priority=2
                )
            except Exception as e:
                self.logger.error(f"Failed to send outcome notification for job {job.id}: {e}")

    async def _post_outcome_comment(self, job: Job) -> None:
        issue = job.issue
        number = issue.raw_data.get('number')
        if not (self.config.dispatch.post_outcome_comments and self.github_client
                and issue.source_type == SourceType.GITHUB and issue.repository and number):
            return
        # The human executor already explained the hand-off on the issue
        if job.dispatch_decision.executor == ExecutorKind.HUMAN and job.status == JobStatus.COMPLETED:
            return

        comment = f"{self._describe_outcome(job)}\n\nDispatch job: `{job.id}` (attempt {job.attempt})"
        try:
            await asyncio.to_thread(self.github_client.add_comment, issue.repository, number, comment)
        except Exception as e:
            self.logger.error(f"Failed to comment outcome of job {job.id} on {issue.id}: {e}")

    @staticmethod
    def _describe_outcome(job: Job) -> str:
        result = job.result
        if job.status == JobStatus.COMPLETED:
            if job.dispatch_decision.executor == ExecutorKind.HUMAN:
                return "Escalated to a human owner."
            pull_url = (result.outputs.get('create-pr') if result else None) or ''
            if pull_url.startswith('http'):
                return f"Fixed automatically. Pull request: {pull_url}"
            return "Fixed automatically."
        if job.status == JobStatus.FAILED:
            if job.approval is not None and job.approval.decision == ApprovalDecision.REJECT:
                return f"Automated fix rejected by reviewer: {job.error}"
            step = f" at step {result.failed_step}" if result and result.failed_step else ""
            return f"Automated fix failed{step}: {job.error}"
        if job.status == JobStatus.ERROR:
            return f"Automated fix stopped with an error: {job.error}"
        if job.status == JobStatus.APPROVAL_TIMEOUT:
            return "Automated fix timed out waiting for approval and was not run. Handing over to a human."
        if job.status == JobStatus.CANCELLED:
            return "Automated fix cancelled."
        return f"Job is {job.status.value}."

    async def _alert_operators(self, title: str, message: str, job: Optional[Job] = None, **ids) -> None:
        self._audit('operator_alert', job, title=title, message=message, **ids)
        if self.notification_manager is None:
            return
        context = NotificationContext(job=job, additional_data={
            'alert_title': title,
            'alert_message': message,
            'alert_details': job.error if job and job.error else '',
        })
        try:
            await self.notification_manager.send_notification(
                NotificationType.OPERATOR_ALERT, self.config.dispatch.operator_recipient, context
            )
        except Exception as e:
            self.logger.error(f"Failed to alert operators: {e}")
