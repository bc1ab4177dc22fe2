"""
PartsConnect Matching Tasks
Celery task that runs the auto-match sweep.
"""
import asyncio
from typing import Any

import structlog

from agents.delivery.dispatcher import NotificationDispatcher
from agents.matching.exceptions import RateLimitExceeded
from agents.matching.factory import create_auto_match_sweep
from backend.celery_app import celery_app
from backend.database import close_db, get_async_session

logger = structlog.get_logger().bind(module="matching_tasks")


# =============================================================================
# Auto-Match Sweep
# =============================================================================

@celery_app.task(
    bind=True,
    queue="high",
    priority=7,
    soft_time_limit=900,
    time_limit=960,
    # A retried sweep would spend another rate limit slot
    autoretry_for=(),
    max_retries=0,
)
def run_auto_match_sweep(self, actor_id: str) -> dict[str, Any]:
    """
    Run one auto-match sweep on behalf of an actor.

    Args:
        actor_id: Profile id the sweep is attributed to.

    Returns:
        Sweep summary; on a rate limit denial
        {"matches_created": 0, "rate_limited": True, "retry_after_seconds": n}.
    """
    logger.info("auto_match_sweep_task_started", task_id=self.request.id, actor_id=actor_id)
    return asyncio.run(_run_auto_match_sweep_async(actor_id))


async def _run_auto_match_sweep_async(actor_id: str) -> dict[str, Any]:
    dispatcher = NotificationDispatcher()
    try:
        async with get_async_session() as session:
            sweep = create_auto_match_sweep(session, dispatcher)
            try:
                summary = await sweep.run(actor_id)
            except RateLimitExceeded as e:
                logger.warning(
                    "auto_match_sweep_rate_limited",
                    actor_id=actor_id,
                    retry_after_seconds=e.retry_after_seconds,
                )
                return {
                    "matches_created": 0,
                    "rate_limited": True,
                    "retry_after_seconds": e.retry_after_seconds,
                    "message": e.cooldown_message,
                }
        result = summary.model_dump()
        result["rate_limited"] = False
        return result
    finally:
        await dispatcher.drain()
        # Connections are bound to this event loop
        await close_db()
