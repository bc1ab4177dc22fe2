"""
PartsConnect Delivery Channels
SendGrid email channel and WhatsApp deep links.
"""
import asyncio
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote
from uuid import UUID

import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Category,
    Content,
    CustomArg,
    Email,
    Mail,
    To,
)

from agents.delivery.models import DeliveryChannel, DeliveryStatus, EmailContent


def whatsapp_link(phone_number: Optional[str], message: str) -> Optional[str]:
    """
    Build a wa.me deep link.

    Args:
        phone_number: Free-form phone number; non-digits are stripped.
        message: Prefilled message text.

    Returns:
        Link, or None when there is no usable number.
    """
    if not phone_number:
        return None
    digits = re.sub(r"\D", "", phone_number)
    if not digits:
        return None
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"


class BaseChannel(ABC):
    """Abstract base class for delivery channels."""

    @abstractmethod
    async def send(self, content: Any, match_id: UUID, recipient_id: UUID) -> DeliveryStatus:
        """Send content through this channel."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if this channel is properly configured."""
        pass


class SendGridChannel(BaseChannel):
    """
    SendGrid email delivery channel.

    Features:
    - HTML with plain text fallback
    - match_id custom arg for webhook correlation
    - Retry with exponential backoff on transient errors
    - Blocking SDK call runs in a worker thread
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)

    def __init__(self, api_key: Optional[str], retry_delays: Optional[tuple[float, ...]] = None):
        self.api_key = api_key
        if retry_delays is not None:
            self.RETRY_DELAYS = retry_delays
        self._client: Optional[SendGridAPIClient] = None
        self.logger = structlog.get_logger().bind(channel="sendgrid")

    @property
    def client(self) -> SendGridAPIClient:
        """Lazy-loaded SendGrid client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("SendGrid API key not configured")
            self._client = SendGridAPIClient(api_key=self.api_key)
        return self._client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _build_message(self, content: EmailContent) -> Mail:
        message = Mail()
        message.from_email = Email(content.from_email, content.from_name)
        message.subject = content.subject
        message.add_to(To(content.to_email, content.to_name))

        # Plain text first for proper fallback
        message.add_content(Content("text/plain", content.body_text))
        message.add_content(Content("text/html", content.body_html))

        message.category = Category("match_notification")

        if content.tracking_id:
            message.add_custom_arg(CustomArg(key="match_id", value=content.tracking_id))

        return message

    def _is_retryable_error(self, exception: Exception) -> bool:
        """
        Determine if an error is transient and worth retrying.
        """
        error_str = str(exception).lower()
        retryable_patterns = [
            "timeout",
            "connection",
            "rate limit",
            "429",
            "500",
            "502",
            "503",
            "504",
        ]
        return any(pattern in error_str for pattern in retryable_patterns)

    async def send(self, content: EmailContent, match_id: UUID, recipient_id: UUID) -> DeliveryStatus:
        """
        Send email via SendGrid with retry logic.

        Args:
            content: Email content to send.
            match_id: Match the email is about.
            recipient_id: Profile receiving the email.

        Returns:
            DeliveryStatus; failures are reported, not raised.
        """
        status = DeliveryStatus(
            match_id=match_id,
            recipient_id=recipient_id,
            channel=DeliveryChannel.EMAIL,
        )

        if not self.is_configured():
            status.status = "skipped"
            status.error_message = "SendGrid API key not configured"
            self.logger.warning("email_channel_not_configured", to=content.to_email)
            return status

        message = self._build_message(content)
        last_exception: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await asyncio.to_thread(self.client.send, message)

                status.status = "sent"
                status.sent_at = datetime.now(timezone.utc)
                status.provider_message_id = response.headers.get("X-Message-Id")
                status.retry_count = attempt

                self.logger.info(
                    "email_sent",
                    to=content.to_email,
                    subject=content.subject[:50],
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
                return status

            except Exception as e:
                last_exception = e
                status.retry_count = attempt + 1

                self.logger.warning(
                    "email_send_attempt_failed",
                    to=content.to_email,
                    error=str(e),
                    attempt=attempt + 1,
                    max_retries=self.MAX_RETRIES,
                )

                if attempt < self.MAX_RETRIES - 1 and self._is_retryable_error(e):
                    await asyncio.sleep(self.RETRY_DELAYS[attempt])
                else:
                    break

        status.status = "failed"
        status.error_message = str(last_exception) if last_exception else "Unknown error"
        self.logger.error(
            "email_send_failed",
            to=content.to_email,
            error=status.error_message,
            total_attempts=status.retry_count,
        )
        return status
