"""Base classes for notification services."""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional
import logging

from ..models.common import utcnow
from .models import (
    NotificationRequest,
    NotificationResult,
    NotificationChannel,
    NotificationStatus,
    NotificationTemplate,
    NotificationContext
)


RETRYABLE_ERRORS = ('timeout', 'connection', 'network', 'rate limit', 'server error', '5xx', 'temporary')


class NotificationService(ABC):
    """Abstract base class for notification services."""

    def __init__(self, channel: NotificationChannel, config: Dict[str, Any]):
        """Initialize the notification service.

        Args:
            channel: The notification channel this service handles
            config: Configuration dictionary for the service
        """
        self.channel = channel
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._enabled = config.get('enabled', True)
        self._max_retries = config.get('max_retries', 3)
        self._retry_delay = config.get('retry_delay', 60)  # seconds

    @property
    def enabled(self) -> bool:
        return self._enabled

    @abstractmethod
    async def send_notification(
        self,
        request: NotificationRequest,
        template: NotificationTemplate,
        context: NotificationContext
    ) -> NotificationResult:
        """Send a notification using this service.

        Args:
            request: The notification request
            template: The template to use for formatting
            context: Context data for the notification

        Returns:
            NotificationResult with delivery status
        """

    @abstractmethod
    def validate_config(self) -> bool:
        """Return True if the service configuration is usable."""

    def calculate_retry_delay(self, retry_count: int) -> int:
        """Exponential backoff capped at one hour."""
        return min(self._retry_delay * (2 ** retry_count), 3600)

    def should_retry(self, result: NotificationResult) -> bool:
        return (
            result.status == NotificationStatus.FAILED and
            result.retry_count < self._max_retries and
            self._is_retryable_error(result.error_details)
        )

    def _is_retryable_error(self, error_details: Optional[str]) -> bool:
        if not error_details:
            return True
        error_lower = error_details.lower()
        return any(error in error_lower for error in RETRYABLE_ERRORS)

    def create_result(
        self,
        request_id: str,
        status: NotificationStatus,
        message: Optional[str] = None,
        error_details: Optional[str] = None,
        retry_count: int = 0
    ) -> NotificationResult:
        """Create a notification result, scheduling a retry when appropriate."""
        result = NotificationResult(
            request_id=request_id,
            channel=self.channel,
            status=status,
            message=message,
            error_details=error_details,
            retry_count=retry_count
        )

        if status == NotificationStatus.SENT:
            result.delivered_at = utcnow()
        elif status == NotificationStatus.FAILED and self.should_retry(result):
            result.status = NotificationStatus.RETRYING
            delay = self.calculate_retry_delay(retry_count)
            result.next_retry_at = utcnow() + timedelta(seconds=delay)

        return result


class NotificationServiceRegistry:
    """Registry for notification services."""

    def __init__(self):
        self._services: Dict[NotificationChannel, NotificationService] = {}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def register_service(self, service: NotificationService) -> None:
        if not service.validate_config():
            self.logger.warning(f"Service {service.channel} has invalid configuration, skipping registration")
            return

        self._services[service.channel] = service
        self.logger.info(f"Registered notification service for channel: {service.channel}")

    def get_service(self, channel: NotificationChannel) -> Optional[NotificationService]:
        return self._services.get(channel)

    def get_enabled_services(self) -> List[NotificationService]:
        return [service for service in self._services.values() if service.enabled]

    def get_available_channels(self) -> List[NotificationChannel]:
        return [channel for channel, service in self._services.items() if service.enabled]
