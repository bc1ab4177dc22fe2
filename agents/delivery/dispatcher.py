"""
Notification Dispatcher
Fire-and-forget hand-off of match notices to the delivery queue.
"""
import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from agents.delivery.models import MatchNotification

logger = structlog.get_logger().bind(component="notification_dispatcher")

Transport = Callable[[MatchNotification], Awaitable[None]]

DELIVER_MATCH_NOTIFICATION_TASK = "backend.tasks.notifications.deliver_match_notification"


async def celery_transport(notice: MatchNotification) -> None:
    """
    Enqueue the delivery task on the critical queue.

    The broker publish blocks, so it runs in a worker thread.
    """
    from backend.celery_app import celery_app

    await asyncio.to_thread(
        celery_app.send_task,
        DELIVER_MATCH_NOTIFICATION_TASK,
        args=[notice.model_dump(mode="json")],
        queue="critical",
    )


class NotificationDispatcher:
    """
    Schedules notification hand-offs without blocking the caller.

    Each dispatch becomes its own asyncio task. Failures are logged by the
    task's done-callback and never reach the code that dispatched.
    """

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport or celery_transport
        self._pending: set[asyncio.Task] = set()
        self.dispatched = 0
        self.failed = 0

    def dispatch(self, notice: MatchNotification) -> None:
        """
        Hand a notice to the transport and return immediately.

        Must be called from inside a running event loop.
        """
        task = asyncio.get_running_loop().create_task(self.transport(notice))
        self._pending.add(task)
        self.dispatched += 1
        task.add_done_callback(lambda t: self._on_done(t, notice))

    def _on_done(self, task: asyncio.Task, notice: MatchNotification) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self.failed += 1
            logger.warning("notification_dispatch_cancelled", match_id=str(notice.match_id))
            return
        error = task.exception()
        if error is not None:
            self.failed += 1
            logger.error(
                "notification_dispatch_failed",
                match_id=str(notice.match_id),
                error_type=type(error).__name__,
                error=str(error),
            )
            return
        logger.debug("notification_dispatched", match_id=str(notice.match_id))

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every outstanding hand-off to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            # Let done-callbacks run
            await asyncio.sleep(0)
