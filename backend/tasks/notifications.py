"""
PartsConnect Notification Tasks
Celery task that emails both parties when a match is created.
"""
import asyncio
from typing import Any

import structlog

from agents.delivery.alerter import MatchAlerter
from agents.delivery.channels import SendGridChannel
from agents.delivery.models import MatchNotification
from backend.celery_app import celery_app
from backend.core.config import settings
from backend.database import close_db, get_async_session

logger = structlog.get_logger().bind(module="notification_tasks")


# =============================================================================
# Match Notification
# =============================================================================


@celery_app.task(queue="critical", priority=10)
def deliver_match_notification(notice: dict[str, Any]) -> dict[str, Any]:
    """
    Email supplier and requester about a new match.

    Retried with backoff by the base task when the database is unavailable;
    individual email failures are reported in the result instead.

    Args:
        notice: MatchNotification as JSON.

    Returns:
        Delivery report as JSON.
    """
    parsed = MatchNotification.model_validate(notice)
    logger.info("match_notification_task_started", match_id=str(parsed.match_id))
    return asyncio.run(_deliver_match_notification_async(parsed))


async def _deliver_match_notification_async(notice: MatchNotification) -> dict[str, Any]:
    try:
        async with get_async_session() as session:
            alerter = MatchAlerter(
                session,
                channel=SendGridChannel(settings.sendgrid_api_key),
                frontend_url=settings.frontend_url,
                from_email=settings.from_email,
                from_name=settings.from_name,
            )
            report = await alerter.deliver(notice)
    finally:
        # Connections are bound to this event loop
        await close_db()

    logger.info(
        "match_notification_delivered",
        match_id=str(notice.match_id),
        sent=report.sent_count,
        total=len(report.deliveries),
    )
    return report.model_dump(mode="json")
