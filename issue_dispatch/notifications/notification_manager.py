"""Notification manager for coordinating notification delivery."""

import asyncio
import logging
from typing import Dict, List, Optional

from .base import NotificationService, NotificationServiceRegistry
from .email_service import EmailNotificationService
from .slack_service import SlackNotificationService
from .models import (
    NotificationRequest,
    NotificationResult,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    NotificationTemplate,
    NotificationContext,
    DEFAULT_CHANNELS,
    DEFAULT_TEMPLATES
)
from ..config.settings import NotificationConfig


class NotificationManager:
    """Manages notification delivery across multiple channels."""

    def __init__(self, config: NotificationConfig,
                 services: Optional[List[NotificationService]] = None):
        """Initialize the notification manager.

        Args:
            config: Notification configuration
            services: Services to register instead of the configured Slack/email ones
        """
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.service_registry = NotificationServiceRegistry()
        self.templates: Dict[tuple, NotificationTemplate] = DEFAULT_TEMPLATES.copy()

        self.retry_queue: List[NotificationRequest] = []
        self.retry_task: Optional[asyncio.Task] = None
        self.sent_count = 0
        self.failed_count = 0

        if services is not None:
            for service in services:
                self.service_registry.register_service(service)
        else:
            self._initialize_services()

    def _initialize_services(self) -> None:
        """Initialize notification services based on configuration."""
        if not self.config.enabled:
            self.logger.info("Notifications are disabled")
            return

        if self.config.email_enabled:
            email_service = EmailNotificationService({
                'enabled': True,
                'smtp_host': self.config.smtp_host,
                'smtp_port': self.config.smtp_port,
                'smtp_username': self.config.smtp_username,
                'smtp_password': self.config.smtp_password,
                'smtp_use_tls': self.config.smtp_use_tls,
                'email_from_address': self.config.email_from_address,
                'email_from_name': self.config.email_from_name,
                'default_recipient': self.config.email_default_recipient,
                'max_retries': self.config.max_retries,
                'retry_delay': self.config.retry_delay
            })
            self.service_registry.register_service(email_service)

        if self.config.slack_enabled and (self.config.slack_bot_token or self.config.slack_webhook_url):
            slack_service = SlackNotificationService({
                'enabled': True,
                'slack_bot_token': self.config.slack_bot_token,
                'slack_webhook_url': self.config.slack_webhook_url,
                'slack_default_channel': self.config.slack_default_channel,
                'max_retries': self.config.max_retries,
                'retry_delay': self.config.retry_delay
            })
            self.service_registry.register_service(slack_service)

        self.logger.info(f"Initialized {len(self.service_registry.get_enabled_services())} notification services")

    async def send_notification(
        self,
        notification_type: NotificationType,
        recipient_id: str,
        context: NotificationContext,
        channels: Optional[List[NotificationChannel]] = None,
        priority: int = 1
    ) -> List[NotificationResult]:
        """Send a notification to specified channels.

        Args:
            notification_type: Type of notification
            recipient_id: Channel, user handle or email of the recipient
            context: Context data for the notification
            channels: Specific channels to use (optional)
            priority: Notification priority (1=high, 2=medium, 3=low)

        Returns:
            List of notification results
        """
        if not self.config.enabled:
            self.logger.debug("Notifications are disabled, skipping")
            return []

        if channels is None:
            channels = DEFAULT_CHANNELS.get(notification_type, [])

        available = self.service_registry.get_available_channels()
        enabled_channels = [channel for channel in channels if channel in available]
        if not enabled_channels:
            self.logger.info(f"No enabled channels for {notification_type.value} to {recipient_id}")
            return []

        request = NotificationRequest(
            notification_type=notification_type,
            recipient_id=recipient_id,
            context=context,
            channels=enabled_channels,
            priority=priority
        )

        results = []
        for channel in enabled_channels:
            result = await self._send_to_channel(request, channel)
            results.append(result)
            self._record(result)

            if result.status == NotificationStatus.RETRYING:
                self.retry_queue.append(request)

        return results

    async def _send_to_channel(
        self,
        request: NotificationRequest,
        channel: NotificationChannel
    ) -> NotificationResult:
        service = self.service_registry.get_service(channel)
        if not service or not service.enabled:
            return NotificationResult(
                request_id=request.id,
                channel=channel,
                status=NotificationStatus.FAILED,
                error_details=f"Service for {channel.value} not available"
            )

        template = self.get_template(request.notification_type, channel)
        if not template:
            return NotificationResult(
                request_id=request.id,
                channel=channel,
                status=NotificationStatus.FAILED,
                error_details=f"Template for {request.notification_type.value}/{channel.value} not found"
            )

        try:
            result = await service.send_notification(request, template, request.context)
            self.logger.info(f"Notification {request.id} sent via {channel.value}: {result.status.value}")
            return result
        except Exception as e:
            # A broken channel must not take the caller down with it
            self.logger.error(f"Failed to send notification {request.id} via {channel.value}: {e}",
                              exc_info=True)
            return NotificationResult(
                request_id=request.id,
                channel=channel,
                status=NotificationStatus.FAILED,
                error_details=str(e)
            )

    def _record(self, result: NotificationResult) -> None:
        if result.status == NotificationStatus.SENT:
            self.sent_count += 1
        elif result.status == NotificationStatus.FAILED:
            self.failed_count += 1

    def get_template(
        self,
        notification_type: NotificationType,
        channel: NotificationChannel
    ) -> Optional[NotificationTemplate]:
        return self.templates.get((notification_type, channel))

    def start(self) -> None:
        """Start the retry processor. Requires a running event loop."""
        if self.config.enabled and (self.retry_task is None or self.retry_task.done()):
            self.retry_task = asyncio.create_task(self._process_retries())

    async def _process_retries(self) -> None:
        while True:
            await asyncio.sleep(self.config.retry_delay)

            if not self.retry_queue:
                continue

            ready_for_retry = list(self.retry_queue)
            self.retry_queue.clear()

            for request in ready_for_retry:
                for channel in request.channels:
                    result = await self._send_to_channel(request, channel)
                    self._record(result)
                    if result.status == NotificationStatus.RETRYING:
                        self.retry_queue.append(request)

    def get_notification_stats(self) -> Dict[str, int]:
        return {
            'sent': self.sent_count,
            'failed': self.failed_count,
            'pending_retries': len(self.retry_queue),
            'channels': len(self.service_registry.get_available_channels()),
        }

    async def shutdown(self) -> None:
        """Shutdown the notification manager."""
        if self.retry_task and not self.retry_task.done():
            self.retry_task.cancel()
            try:
                await self.retry_task
            except asyncio.CancelledError:
                pass
