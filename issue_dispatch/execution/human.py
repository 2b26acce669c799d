"""Executor that hands issues to people."""

import asyncio
from typing import List, Optional

from issue_dispatch.config.settings import DispatchConfig
from issue_dispatch.models.common import ExecutionResult, ExecutorKind, Job, SourceType
from issue_dispatch.notifications.models import NotificationContext, NotificationStatus, NotificationType
from .base import Executor

HANDOFF_LABELS = ('needs-human',)


class HumanExecutor(Executor):
    """Records an assignment on the issue and notifies the team.

    Handing off succeeds even when the comment or notification cannot be
    delivered; the failures are logged and listed in the result details.
    """

    kind = ExecutorKind.HUMAN

    def __init__(self, notification_manager=None, github_client=None, jira_client=None,
                 config: Optional[DispatchConfig] = None, assignees: Optional[List[str]] = None):
        super().__init__()
        self.notification_manager = notification_manager
        self.github_client = github_client
        self.jira_client = jira_client
        self.config = config or DispatchConfig()
        self.assignees = list(assignees or [])

    async def execute(self, job: Job) -> ExecutionResult:
        problems = await self._update_issue(job, self._format_comment(job))

        if self.notification_manager is not None:
            context = NotificationContext(job=job)
            try:
                results = await self.notification_manager.send_notification(
                    NotificationType.HUMAN_ASSIGNMENT, self.config.team_recipient, context
                )
            except Exception as e:
                self.logger.error(f"Team notification for job {job.id} failed: {e}")
                results = []
            if not any(result.status == NotificationStatus.SENT for result in results):
                problems.append("team notification not delivered")

        details = "handed off"
        if problems:
            details += f" ({'; '.join(problems)})"
            self.logger.warning(f"Job {job.id} handed off with problems: {problems}")
        return ExecutionResult(success=True, details=details)

    async def _update_issue(self, job: Job, comment: str) -> List[str]:
        """Comment on, label and assign the source issue; returns what went wrong."""
        issue = job.issue
        number = issue.raw_data.get('number')

        if issue.source_type == SourceType.GITHUB and self.github_client and issue.repository and number:
            calls = [
                ("issue comment not posted", self.github_client.add_comment, comment),
                ("hand-off label not added", self.github_client.add_labels, list(HANDOFF_LABELS)),
            ]
            if self.assignees:
                calls.append(("assignees not set", self.github_client.assign_issue, self.assignees))
            problems = []
            for problem, call, argument in calls:
                if not await self._provider_call(job, call, issue.repository, number, argument):
                    problems.append(problem)
            return problems

        if issue.source_type == SourceType.JIRA and self.jira_client and issue.provider_id:
            if await self._provider_call(job, self.jira_client.add_comment, issue.provider_id, comment):
                return []

        return ["issue comment not posted"]

    async def _provider_call(self, job: Job, call, *args) -> bool:
        try:
            return bool(await asyncio.to_thread(call, *args))
        except Exception as e:
            self.logger.error(f"Hand-off call {call.__name__} for job {job.id} failed: {e}")
            return False

    @staticmethod
    def _format_comment(job: Job) -> str:
        evaluation = job.evaluation
        lines = [
            "This issue needs a human owner and will not be handled automatically.",
            "",
            f"Reason: {job.dispatch_decision.reason}",
            f"Complexity: {evaluation.complexity.level.value} ({evaluation.complexity.score})",
            f"Confidence: {evaluation.confidence.level.value} ({evaluation.confidence.score})",
            f"Risk: {evaluation.risk.level.value} ({evaluation.risk.score})",
        ]
        if evaluation.reasoning:
            lines.append("")
            lines.extend(f"- {reason}" for reason in evaluation.reasoning)
        lines.append("")
        lines.append(f"Dispatch job: `{job.id}`")
        return "\n".join(lines)
