"""
PartsConnect Celery Application Configuration

This module configures the Celery task queue for PartsConnect: priority
queues for notification delivery and the auto-match sweep, retry policy,
beat scheduling and task monitoring hooks.
"""

import logging
import time
from datetime import timedelta
from typing import Any

from celery import Celery, Task
from celery.signals import (
    task_failure,
    task_postrun,
    task_prerun,
    task_retry,
    worker_process_init,
)
from kombu import Exchange, Queue

from backend.core.config import settings

logger = logging.getLogger(__name__)


# =============================================================================
# Queue Definitions
# =============================================================================

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

TASK_QUEUES = (
    # Critical queue: match notifications
    Queue(
        "critical",
        exchange=priority_exchange,
        routing_key="critical",
        queue_arguments={"x-max-priority": 10},
    ),
    # High queue: auto-match sweeps
    Queue(
        "high",
        exchange=priority_exchange,
        routing_key="high",
        queue_arguments={"x-max-priority": 7},
    ),
    # Normal queue: everything else
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
        queue_arguments={"x-max-priority": 3},
    ),
)

TASK_ROUTES = {
    "backend.tasks.notifications.deliver_match_notification": {"queue": "critical"},
    "backend.tasks.matching.run_auto_match_sweep": {"queue": "high"},
}


def build_beat_schedule() -> dict[str, dict[str, Any]]:
    """
    Periodic tasks.

    The sweep is only scheduled when a system actor is configured, since
    every sweep runs on behalf of (and is rate limited for) an actor.
    """
    schedule: dict[str, dict[str, Any]] = {}
    if settings.auto_match_system_actor_id:
        schedule["auto-match-sweep"] = {
            "task": "backend.tasks.matching.run_auto_match_sweep",
            "schedule": timedelta(minutes=settings.auto_match_schedule_minutes),
            "args": (settings.auto_match_system_actor_id,),
            "options": {"queue": "high"},
        }
    return schedule


# =============================================================================
# Celery Application
# =============================================================================

def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Configured Celery application instance.
    """
    app = Celery(
        "partsconnect",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=[
            "backend.tasks.matching",
            "backend.tasks.notifications",
        ],
    )

    app.conf.update(
        # =============
        # Serialization
        # =============
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",

        # =======
        # Queues
        # =======
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="normal",
        task_default_exchange="default",
        task_default_routing_key="normal",

        # ===========
        # Time Limits
        # ===========
        task_soft_time_limit=300,
        task_time_limit=600,

        # =============
        # Retry Policy
        # =============
        task_default_retry_delay=10,
        task_max_retries=3,

        # ==========
        # Concurrency
        # ==========
        worker_concurrency=4,
        worker_prefetch_multiplier=1,

        # ===========
        # Result Backend
        # ===========
        result_expires=86400,

        # ==========
        # Task Track
        # ==========
        task_track_started=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        # ========
        # Timezone
        # ========
        timezone="UTC",
        enable_utc=True,

        broker_connection_retry_on_startup=True,

        beat_schedule=build_beat_schedule(),
    )

    return app


celery_app = create_celery_app()


# =============================================================================
# Base Task
# =============================================================================

class BaseTaskWithRetry(Task):
    """
    Base task class with exponential backoff retry policy.

    Tasks that must not be retried override autoretry_for with ().
    """

    autoretry_for = (Exception,)
    max_retries = 3
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        """Log task failure."""
        logger.error(
            f"Task {self.name}[{task_id}] failed after {self.request.retries} retries: {exc}",
            exc_info=True,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app.Task = BaseTaskWithRetry


# =============================================================================
# Monitoring Hooks
# =============================================================================

_task_start_times: dict[str, float] = {}


@task_prerun.connect
def task_prerun_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    **extra: Any,
) -> None:
    """Record task start time for latency tracking."""
    if task_id:
        _task_start_times[task_id] = time.time()


@task_postrun.connect
def task_postrun_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    state: str | None = None,
    **extra: Any,
) -> None:
    """Log task latency."""
    if task_id and task_id in _task_start_times:
        latency = time.time() - _task_start_times.pop(task_id)
        task_name = sender.name if sender else "unknown"
        logger.info(f"Task {task_name}[{task_id}] completed in {latency:.3f}s with state={state}")


@task_failure.connect
def task_failure_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    exception: Exception | None = None,
    **kwargs: Any,
) -> None:
    """Handle task failure."""
    logger.error(f"Task {sender.name if sender else 'unknown'}[{task_id}] failed: {exception}")
    if task_id:
        _task_start_times.pop(task_id, None)


@task_retry.connect
def task_retry_handler(
    sender: Task | None = None,
    request: Any = None,
    reason: Any = None,
    **kwargs: Any,
) -> None:
    """Handle task retry."""
    task_id = request.id if request else "unknown"
    logger.warning(f"Task {sender.name if sender else 'unknown'}[{task_id}] retrying: {reason}")


@worker_process_init.connect
def init_worker_sentry(**kwargs: Any) -> None:
    """Enable Sentry in each worker process."""
    from backend.core.sentry import init_sentry

    init_sentry(service="celery")


__all__ = [
    "celery_app",
    "BaseTaskWithRetry",
    "build_beat_schedule",
]
