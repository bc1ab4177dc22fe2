"""
PartsConnect Match Notification Delivery
Hands match notices off to the queue and emails both parties.
"""
from agents.delivery.alerter import MatchAlerter
from agents.delivery.channels import (
    BaseChannel,
    SendGridChannel,
    whatsapp_link,
)
from agents.delivery.dispatcher import (
    NotificationDispatcher,
    celery_transport,
)
from agents.delivery.models import (
    DeliveryChannel,
    DeliveryStatus,
    EmailContent,
    MatchDeliveryReport,
    MatchNotification,
    RecipientInfo,
)

__all__ = [
    # Alerter
    "MatchAlerter",
    # Channels
    "BaseChannel",
    "SendGridChannel",
    "whatsapp_link",
    # Dispatch
    "NotificationDispatcher",
    "celery_transport",
    # Models
    "DeliveryChannel",
    "DeliveryStatus",
    "EmailContent",
    "MatchDeliveryReport",
    "MatchNotification",
    "RecipientInfo",
]
