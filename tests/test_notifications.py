"""Tests for notification templates and the notification manager."""

from issue_dispatch.config.settings import NotificationConfig
from issue_dispatch.models.common import ExecutorKind
from issue_dispatch.notifications import NotificationManager
from issue_dispatch.notifications.base import NotificationService
from issue_dispatch.notifications.models import (
    DEFAULT_TEMPLATES, NotificationChannel, NotificationContext, NotificationStatus, NotificationTemplate,
    NotificationType
)


class RecordingSlack(NotificationService):

    def __init__(self, fail_with=None):
        super().__init__(NotificationChannel.SLACK, {'enabled': True, 'max_retries': 0})
        self.fail_with = fail_with
        self.messages = []

    def validate_config(self):
        return True

    async def send_notification(self, request, template, context):
        if self.fail_with:
            raise self.fail_with
        self.messages.append((request.recipient_id, template.render_subject(context),
                              template.render_body(context)))
        return self.create_result(request.id, NotificationStatus.SENT)


def test_approval_template_lists_reply_commands(make_job):
    job = make_job(executor=ExecutorKind.HYBRID, approval_required=True)
    template = DEFAULT_TEMPLATES[(NotificationType.APPROVAL_REQUEST, NotificationChannel.EMAIL)]
    context = NotificationContext(job=job, additional_data={"proposed_action": "run the plan",
                                                            "timeout_minutes": 60})
    body = template.render_body(context)

    assert f"/approve {job.id}" in body
    assert f"/reject {job.id} [reason]" in body
    assert "within 60 minutes" in body
    assert template.render_subject(context) == f"Approval needed: {job.issue.title}"


def test_missing_value_leaves_placeholder():
    template = NotificationTemplate(NotificationType.OPERATOR_ALERT, NotificationChannel.SLACK,
                                    "Alert: {alert_title}", "{alert_message}")
    assert template.render_subject(NotificationContext()) == "Alert: [alert_title]"


async def test_sends_only_to_registered_channels(make_job):
    slack = RecordingSlack()
    manager = NotificationManager(NotificationConfig(), services=[slack])
    results = await manager.send_notification(NotificationType.HUMAN_ASSIGNMENT, "#team",
                                              NotificationContext(job=make_job()))

    assert [(result.channel, result.status) for result in results] == [
        (NotificationChannel.SLACK, NotificationStatus.SENT)
    ]
    recipient, subject, body = slack.messages[0]
    assert recipient == "#team"
    assert subject.startswith("Needs a human:")
    assert body.startswith(":bust_in_silhouette:")
    assert manager.get_notification_stats()["sent"] == 1


async def test_broken_channel_reports_failure(make_job):
    manager = NotificationManager(NotificationConfig(), services=[RecordingSlack(fail_with=ValueError("bad"))])
    [result] = await manager.send_notification(NotificationType.JOB_OUTCOME, "#team",
                                               NotificationContext(job=make_job()))

    assert result.status == NotificationStatus.FAILED
    assert result.error_details == "bad"
    assert manager.get_notification_stats()["failed"] == 1


async def test_disabled_notifications_send_nothing(make_job):
    slack = RecordingSlack()
    manager = NotificationManager(NotificationConfig(enabled=False), services=[slack])
    assert await manager.send_notification(NotificationType.OPERATOR_ALERT, "#ops",
                                           NotificationContext(job=make_job())) == []
    assert slack.messages == []


def test_no_services_without_configuration():
    manager = NotificationManager(NotificationConfig())
    assert manager.get_notification_stats()["channels"] == 0
