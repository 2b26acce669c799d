"""Email notification service implementation."""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from .base import NotificationService
from .models import (
    NotificationRequest,
    NotificationResult,
    NotificationChannel,
    NotificationStatus,
    NotificationTemplate,
    NotificationContext
)


class EmailNotificationService(NotificationService):
    """Email notification service using SMTP."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize the email service.

        Args:
            config: Email configuration dictionary
        """
        super().__init__(NotificationChannel.EMAIL, config)

        self.smtp_host = config.get('smtp_host', 'smtp.gmail.com')
        self.smtp_port = config.get('smtp_port', 587)
        self.smtp_username = config.get('smtp_username', '')
        self.smtp_password = config.get('smtp_password', '')
        self.smtp_use_tls = config.get('smtp_use_tls', True)
        self.from_address = config.get('email_from_address', '')
        self.from_name = config.get('email_from_name', 'Issue Dispatch')
        self.default_recipient = config.get('default_recipient', '')

        if not self.validate_config():
            self.logger.error("Invalid email configuration")
            self._enabled = False

    def validate_config(self) -> bool:
        missing_fields = [
            name for name, value in (
                ('smtp_host', self.smtp_host),
                ('smtp_username', self.smtp_username),
                ('smtp_password', self.smtp_password),
                ('email_from_address', self.from_address),
            ) if not value
        ]

        if missing_fields:
            self.logger.error(f"Missing required email configuration fields: {missing_fields}")
            return False
        return True

    async def send_notification(
        self,
        request: NotificationRequest,
        template: NotificationTemplate,
        context: NotificationContext
    ) -> NotificationResult:
        """Send an email notification.

        Args:
            request: The notification request
            template: The email template to use
            context: Context data for the notification

        Returns:
            NotificationResult with delivery status
        """
        if not self.enabled:
            return self.create_result(
                request.id,
                NotificationStatus.FAILED,
                error_details="Email service is disabled"
            )

        recipient_email = self._get_recipient_email(request.recipient_id, context)
        if not recipient_email:
            return self.create_result(
                request.id,
                NotificationStatus.FAILED,
                error_details="Recipient email not found"
            )

        message = MIMEMultipart("alternative")
        message["Subject"] = template.render_subject(context)
        message["From"] = f"{self.from_name} <{self.from_address}>"
        message["To"] = recipient_email
        message.attach(MIMEText(template.render_body(context), "plain"))

        try:
            await asyncio.to_thread(self._send_email, message, recipient_email)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send email for request {request.id}: {e}")
            return self.create_result(
                request.id,
                NotificationStatus.FAILED,
                error_details=f"connection error: {e}"
            )

        self.logger.info(f"Email sent to {recipient_email} for request {request.id}")
        return self.create_result(
            request.id,
            NotificationStatus.SENT,
            message=f"Email sent to {recipient_email}"
        )

    def _get_recipient_email(self, recipient_id: str, context: NotificationContext) -> Optional[str]:
        if '@' in recipient_id and not recipient_id.startswith('@'):
            return recipient_id
        return context.additional_data.get('recipient_email') or self.default_recipient or None

    def _send_email(self, message: MIMEMultipart, recipient_email: str) -> None:
        context = ssl.create_default_context()

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            if self.smtp_use_tls:
                server.starttls(context=context)
            server.login(self.smtp_username, self.smtp_password)
            server.send_message(message, to_addrs=[recipient_email])
