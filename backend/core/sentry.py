"""
Sentry Error Tracking Configuration
Centralized Sentry SDK initialization for the PartsConnect backend.
"""

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from backend.core.config import settings

logger = logging.getLogger(__name__)


def before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """
    Process events before sending to Sentry.

    Drops health check noise and redacts credentials.
    """
    if "request" in event and event["request"].get("url", "").endswith("/health"):
        return None

    if "request" in event and "headers" in event["request"]:
        for header in ("authorization", "cookie"):
            if header in event["request"]["headers"]:
                event["request"]["headers"][header] = "[REDACTED]"

    return event


def init_sentry(service: str = "backend") -> bool:
    """
    Initialize Sentry SDK.

    Args:
        service: Tag identifying the process ("backend" or "worker").

    Returns:
        bool: True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment or settings.environment,
        release=f"partsconnect-{service}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            CeleryIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
            SqlalchemyIntegration(),
        ],
        before_send=before_send,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

    sentry_sdk.set_tag("service", service)
    sentry_sdk.set_tag("app_name", settings.app_name)

    logger.info(
        f"Sentry initialized (service={service}, "
        f"env={settings.sentry_environment or settings.environment}, "
        f"traces={settings.sentry_traces_sample_rate})"
    )
    return True


def capture_exception(
    error: Exception,
    user_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture an exception and send to Sentry.

    Args:
        error: The exception to capture
        user_id: Optional user ID for context
        extra: Optional extra data to attach

    Returns:
        Event ID if captured, None otherwise
    """
    with sentry_sdk.new_scope() as scope:
        if user_id:
            scope.set_user({"id": user_id})

        if extra:
            for key, value in extra.items():
                scope.set_extra(key, value)

        return sentry_sdk.capture_exception(error)
