"""Notification system for approval requests, alerts and outcomes."""

from .models import (
    NotificationType,
    NotificationChannel,
    NotificationStatus,
    NotificationContext,
    NotificationRequest,
    NotificationResult,
    NotificationTemplate,
    DEFAULT_TEMPLATES,
)
from .base import NotificationService, NotificationServiceRegistry
from .email_service import EmailNotificationService
from .slack_service import SlackNotificationService
from .notification_manager import NotificationManager

__all__ = [
    'NotificationType',
    'NotificationChannel',
    'NotificationStatus',
    'NotificationContext',
    'NotificationRequest',
    'NotificationResult',
    'NotificationTemplate',
    'DEFAULT_TEMPLATES',
    'NotificationService',
    'NotificationServiceRegistry',
    'EmailNotificationService',
    'SlackNotificationService',
    'NotificationManager',
]
