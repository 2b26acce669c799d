"""Slack notification service implementation."""

import aiohttp
from typing import Any, Dict, List

from .base import NotificationService
from .models import (
    NotificationRequest,
    NotificationResult,
    NotificationChannel,
    NotificationStatus,
    NotificationTemplate,
    NotificationContext,
    NotificationType,
)


class SlackNotificationService(NotificationService):
    """Slack notification service using the Bot API or an incoming webhook."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize the Slack service.

        Args:
            config: Slack configuration dictionary
        """
        super().__init__(NotificationChannel.SLACK, config)

        self.bot_token = config.get('slack_bot_token', '')
        self.webhook_url = config.get('slack_webhook_url', '')
        self.default_channel = config.get('slack_default_channel', '#dispatch-approvals')
        self.timeout = aiohttp.ClientTimeout(total=config.get('timeout', 30))

        self.api_base_url = "https://slack.com/api"
        self.post_message_url = f"{self.api_base_url}/chat.postMessage"

        if not self.validate_config():
            self.logger.error("Invalid Slack configuration")
            self._enabled = False

    def validate_config(self) -> bool:
        # Need either bot token or webhook URL
        if not self.bot_token and not self.webhook_url:
            self.logger.error("Either Slack bot token or webhook URL is required")
            return False
        return True

    async def send_notification(
        self,
        request: NotificationRequest,
        template: NotificationTemplate,
        context: NotificationContext
    ) -> NotificationResult:
        """Send a Slack notification.

        Args:
            request: The notification request
            template: The Slack template to use
            context: Context data for the notification

        Returns:
            NotificationResult with delivery status
        """
        if not self.enabled:
            return self.create_result(
                request.id,
                NotificationStatus.FAILED,
                error_details="Slack service is disabled"
            )

        try:
            channel = self._get_notification_channel(request.recipient_id, context)
            subject = template.render_subject(context)
            body = template.render_body(context)

            payload = {
                'channel': channel,
                'text': subject,
                'blocks': self._create_message_blocks(subject, body, request, context),
                'unfurl_links': False,
                'unfurl_media': False,
            }
            thread_ts = context.additional_data.get('thread_ts')
            if thread_ts:
                payload['thread_ts'] = thread_ts

            if self.bot_token:
                sent = await self._send_via_bot_api(payload)
            else:
                sent = await self._send_via_webhook(payload)

            if sent:
                self.logger.info(f"Slack message sent to {channel} for request {request.id}")
                return self.create_result(
                    request.id,
                    NotificationStatus.SENT,
                    message=f"Slack message sent to {channel}"
                )
            return self.create_result(
                request.id,
                NotificationStatus.FAILED,
                error_details="Slack rejected the message"
            )

        except aiohttp.ClientError as e:
            self.logger.error(f"Slack connection error for request {request.id}: {e}")
            return self.create_result(
                request.id,
                NotificationStatus.FAILED,
                error_details=f"connection error: {e}"
            )

    def _get_notification_channel(self, recipient_id: str, context: NotificationContext) -> str:
        """Resolve the Slack channel or user a message goes to."""
        if recipient_id.startswith('#') or recipient_id.startswith('@'):
            return recipient_id

        slack_channel = context.additional_data.get('slack_channel')
        if slack_channel:
            return slack_channel

        return self.default_channel

    def _create_message_blocks(
        self,
        subject: str,
        body: str,
        request: NotificationRequest,
        context: NotificationContext
    ) -> List[Dict[str, Any]]:
        """Create Slack message blocks for rich formatting."""
        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": subject[:150]}},
            {"type": "section", "text": {"type": "mrkdwn", "text": body}},
        ]

        # Approval requests get quick links for the reviewer
        if request.notification_type == NotificationType.APPROVAL_REQUEST and context.job:
            issue_url = context.job.issue.url
            elements = []
            if issue_url:
                elements.append({
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View Issue"},
                    "url": issue_url,
                })
            for decision, style in (('approve', 'primary'), ('reject', 'danger')):
                elements.append({
                    "type": "button",
                    "text": {"type": "plain_text", "text": decision.capitalize()},
                    "value": f"/{decision} {context.job.id}",
                    "action_id": f"job_{decision}",
                    "style": style,
                })
            blocks.append({"type": "actions", "elements": elements})

        blocks.append({"type": "divider"})
        return blocks

    async def _send_via_bot_api(self, payload: Dict[str, Any]) -> bool:
        headers = {
            'Authorization': f'Bearer {self.bot_token}',
            'Content-Type': 'application/json'
        }

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.post_message_url, headers=headers, json=payload) as response:
                if response.status == 200:
                    data = await response.json()
                    if not data.get('ok', False):
                        self.logger.error(f"Slack API error: {data.get('error')}")
                    return data.get('ok', False)
                self.logger.error(f"Slack API error: {response.status}")
                return False

    async def _send_via_webhook(self, payload: Dict[str, Any]) -> bool:
        # Webhooks use a simpler payload format
        webhook_payload = {
            'text': payload.get('text', ''),
            'blocks': payload.get('blocks', [])
        }

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.webhook_url, json=webhook_payload) as response:
                return response.status == 200
