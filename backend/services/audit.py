"""
Security Event Log
Persists security-relevant events (rate limit denials, sweep triggers).
"""
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import desc, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.models import SecurityEvent

logger = structlog.get_logger().bind(component="security_event_log")

SEVERITIES = ("low", "medium", "high", "critical")


class SecurityEventLog:
    """
    Writes rows to security_events and mirrors each one to the log.

    Persistence failures are logged and swallowed so that auditing never
    changes the outcome of the operation being audited.
    """

    def __init__(self, db: AsyncSession):
        """Initialize with database session."""
        self.db = db

    async def log_event(
        self,
        event_type: str,
        event_category: str,
        severity: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """
        Record a security event.

        Args:
            event_type: e.g. "rate_limit_exceeded".
            event_category: e.g. "security", "matching".
            severity: One of low, medium, high, critical.
            user_id: Actor the event concerns.
            details: Extra JSON context.
            ip_address: Client IP, when known.
            user_agent: Client user agent, when known.

        Returns:
            True if the event was stored.
        """
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {severity}")

        log_method = logger.warning if severity in ("high", "critical", "medium") else logger.info
        log_method(
            "security_event",
            event_type=event_type,
            event_category=event_category,
            severity=severity,
            user_id=user_id,
            **(details or {}),
        )

        try:
            await self.db.execute(
                insert(SecurityEvent).values(
                    user_id=str(user_id) if user_id else None,
                    event_type=event_type,
                    event_category=event_category,
                    severity=severity,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details=details or {},
                    created_at=datetime.now(timezone.utc),
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("security_event_persist_failed", event_type=event_type, error=str(e))
            return False

        return True

    async def recent_events(
        self,
        user_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 50,
    ) -> list[SecurityEvent]:
        """Most recent events, newest first, optionally filtered."""
        query = select(SecurityEvent)
        if user_id:
            query = query.where(SecurityEvent.user_id == str(user_id))
        if event_type:
            query = query.where(SecurityEvent.event_type == event_type)
        query = query.order_by(desc(SecurityEvent.created_at)).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
