"""Data models for the notification system."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum

from ..models.common import Issue, Job, utcnow


class NotificationType(Enum):
    """Types of notifications."""
    APPROVAL_REQUEST = "approval_request"
    OPERATOR_ALERT = "operator_alert"
    JOB_OUTCOME = "job_outcome"
    HUMAN_ASSIGNMENT = "human_assignment"


class NotificationChannel(Enum):
    """Available notification channels."""
    EMAIL = "email"
    SLACK = "slack"


class NotificationStatus(Enum):
    """Notification delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RETRYING = "retrying"


DEFAULT_CHANNELS: Dict[NotificationType, List[NotificationChannel]] = {
    NotificationType.APPROVAL_REQUEST: [NotificationChannel.SLACK, NotificationChannel.EMAIL],
    NotificationType.OPERATOR_ALERT: [NotificationChannel.SLACK, NotificationChannel.EMAIL],
    NotificationType.JOB_OUTCOME: [NotificationChannel.SLACK],
    NotificationType.HUMAN_ASSIGNMENT: [NotificationChannel.SLACK, NotificationChannel.EMAIL],
}


@dataclass
class NotificationContext:
    """Context data for notification templates."""
    job: Optional[Job] = None
    issue: Optional[Issue] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationRequest:
    """Request to send a notification."""
    notification_type: NotificationType
    recipient_id: str
    context: NotificationContext
    channels: List[NotificationChannel]
    priority: int = 1  # 1=high, 2=medium, 3=low
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class NotificationResult:
    """Result of notification delivery attempt."""
    request_id: str
    channel: NotificationChannel
    status: NotificationStatus
    message: Optional[str] = None
    delivered_at: Optional[datetime] = None
    error_details: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None


def _truncate(text: str, limit: int = 300) -> str:
    text = text or ''
    return text[:limit] + '...' if len(text) > limit else text


@dataclass
class NotificationTemplate:
    """Template for generating notification content."""
    notification_type: NotificationType
    channel: NotificationChannel
    subject_template: str
    body_template: str
    format_type: str = "text"  # text, markdown

    def render_subject(self, context: NotificationContext) -> str:
        return self._render_template(self.subject_template, context)

    def render_body(self, context: NotificationContext) -> str:
        return self._render_template(self.body_template, context)

    def _render_template(self, template: str, context: NotificationContext) -> str:
        """Render a template string with context data."""
        template_vars: Dict[str, Any] = {}

        issue = context.issue or (context.job.issue if context.job else None)
        if issue:
            template_vars.update({
                'issue_id': issue.id,
                'issue_title': issue.title,
                'issue_body': _truncate(issue.body),
                'issue_url': issue.url or f"Issue {issue.id}",
                'issue_source': issue.source_type.value.upper(),
                'issue_repository': issue.repository or 'n/a',
                'issue_priority': issue.priority.value,
                'issue_type': issue.type.value,
            })

        if context.job:
            job = context.job
            evaluation = job.evaluation
            decision = job.dispatch_decision
            template_vars.update({
                'job_id': job.id,
                'job_status': job.status.value,
                'job_attempt': job.attempt,
                'executor': decision.executor.value,
                'mode': decision.mode.value,
                'dispatch_priority': decision.priority.value,
                'dispatch_reason': decision.reason,
                'complexity': f"{evaluation.complexity.level.value} ({evaluation.complexity.score:.2f})",
                'confidence': f"{evaluation.confidence.level.value} ({evaluation.confidence.score:.2f})",
                'risk': f"{evaluation.risk.level.value} ({evaluation.risk.score:.2f})",
                'suitability': evaluation.suitability.value,
                'reasoning': '; '.join(evaluation.reasoning) or 'none',
                'recommendations': ', '.join(sorted(evaluation.recommendations)) or 'none',
                'job_error': job.error or 'none',
            })

        template_vars.update(context.additional_data)

        try:
            return template.format(**template_vars)
        except KeyError as e:
            # Leave a visible placeholder rather than failing the send
            return template.replace(f"{{{e.args[0]}}}", f"[{e.args[0]}]")


_APPROVAL_BODY = """Approval requested for job {job_id}

Issue: {issue_title}
Source: {issue_source} | Repository: {issue_repository} | Priority: {dispatch_priority}
Link: {issue_url}

Evaluation:
- Complexity: {complexity}
- Confidence: {confidence}
- Risk: {risk}
- Suitability: {suitability}
- Reasoning: {reasoning}

Proposed action: {proposed_action}

Reply with one of:
  /approve {job_id}
  /reject {job_id} [reason]
  /modify {job_id} [instructions]

Without a response within {timeout_minutes} minutes the job times out and is not executed."""

_ALERT_BODY = """Operator alert: {alert_title}

{alert_message}

Details: {alert_details}"""

_OUTCOME_BODY = """Job {job_id} finished with status {job_status}

Issue: {issue_title}
Link: {issue_url}
Executor: {executor} ({mode})
Outcome: {outcome}
Error: {job_error}"""

_ASSIGNMENT_BODY = """Issue handed off for human handling

Issue: {issue_title}
Source: {issue_source} | Priority: {dispatch_priority}
Link: {issue_url}

Why: {dispatch_reason}
Evaluation: complexity {complexity}, confidence {confidence}, risk {risk}
Recommendations: {recommendations}"""


def _both_channels(notification_type: NotificationType, subject: str, body: str,
                   slack_prefix: str) -> Dict[tuple, NotificationTemplate]:
    return {
        (notification_type, NotificationChannel.EMAIL): NotificationTemplate(
            notification_type=notification_type,
            channel=NotificationChannel.EMAIL,
            subject_template=subject,
            body_template=body,
            format_type="text",
        ),
        (notification_type, NotificationChannel.SLACK): NotificationTemplate(
            notification_type=notification_type,
            channel=NotificationChannel.SLACK,
            subject_template=subject,
            body_template=f"{slack_prefix} {body}",
            format_type="markdown",
        ),
    }


DEFAULT_TEMPLATES: Dict[tuple, NotificationTemplate] = {}
DEFAULT_TEMPLATES.update(_both_channels(
    NotificationType.APPROVAL_REQUEST, "Approval needed: {issue_title}", _APPROVAL_BODY, ":raised_hand:"))
DEFAULT_TEMPLATES.update(_both_channels(
    NotificationType.OPERATOR_ALERT, "Dispatch alert: {alert_title}", _ALERT_BODY, ":rotating_light:"))
DEFAULT_TEMPLATES.update(_both_channels(
    NotificationType.JOB_OUTCOME, "Job {job_status}: {issue_title}", _OUTCOME_BODY, ":white_check_mark:"))
DEFAULT_TEMPLATES.update(_both_channels(
    NotificationType.HUMAN_ASSIGNMENT, "Needs a human: {issue_title}", _ASSIGNMENT_BODY, ":bust_in_silhouette:"))
