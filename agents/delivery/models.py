"""
PartsConnect Match Notification Models
Pydantic models for match notices and delivery tracking.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DeliveryChannel(str, Enum):
    """Available delivery channels."""

    EMAIL = "email"
    WHATSAPP = "whatsapp"  # Deep link only; sent inside the email


class MatchNotification(BaseModel):
    """
    Notice that a match was created.

    Handed from the engine to the delivery side; carries ids only.
    """

    match_id: UUID
    supplier_id: UUID
    requester_id: UUID
    item_name: str
    item_type: Literal["part", "request"]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecipientInfo(BaseModel):
    """Contact details of one party to a match."""

    profile_id: UUID
    name: str = "there"
    email: Optional[str] = None
    phone: Optional[str] = None


class EmailContent(BaseModel):
    """Generated email content."""

    subject: str = Field(..., max_length=150)
    body_html: str
    body_text: str
    from_email: str
    from_name: str
    to_email: str
    to_name: Optional[str] = None
    tracking_id: Optional[str] = None


class DeliveryStatus(BaseModel):
    """Track delivery of one message."""

    match_id: UUID
    recipient_id: UUID
    channel: DeliveryChannel
    status: str = "pending"  # pending, sent, failed, skipped
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_message_id: Optional[str] = None
    retry_count: int = 0


class MatchDeliveryReport(BaseModel):
    """Per-recipient outcome of delivering one MatchNotification."""

    match_id: UUID
    deliveries: list[DeliveryStatus] = Field(default_factory=list)
    whatsapp_links: dict[str, Optional[str]] = Field(default_factory=dict)

    @property
    def sent_count(self) -> int:
        return sum(1 for d in self.deliveries if d.status == "sent")
