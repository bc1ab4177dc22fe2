"""
Rate Limiting Module
Fixed-window call counters keyed by (actor, operation).

Each (actor, operation) pair has exactly one window. Calls inside an active
window increment its counter up to the limit; once the window has fully
elapsed the next call starts a new window with a count of 1.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis.asyncio as aioredis
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agents.matching.exceptions import StorageUnavailable
from backend.models import RateLimitWindow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def retry_after_seconds(window_start: datetime, window_seconds: int, now: datetime) -> int:
    """Whole seconds until the window ends, never less than 1."""
    remaining = (_as_utc(window_start) + timedelta(seconds=window_seconds) - now).total_seconds()
    return max(1, math.ceil(remaining))


# =============================================================================
# Rate Limit Decision
# =============================================================================


@dataclass
class RateLimitDecision:
    """Outcome of one rate limit check."""

    allowed: bool
    call_count: int  # Calls counted in the current window, including this one if allowed
    limit: int
    retry_after_seconds: int = 0  # Only meaningful when denied

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.call_count)


class WindowRateLimiter:
    """Shared configuration for the window limiters."""

    def __init__(self, limit: int, window_seconds: int, clock: Optional[Clock] = None):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock or utc_now

    async def check(self, actor_id: str, operation: str) -> RateLimitDecision:
        raise NotImplementedError


# =============================================================================
# Database Rate Limiter
# =============================================================================


class DatabaseWindowRateLimiter(WindowRateLimiter):
    """
    Rate limiter backed by the rate_limits table.

    Every step is a single conditional statement, so two concurrent checks
    cannot both take the last slot:
    1. increment an active window that still has room
    2. reset an elapsed window to count 1
    3. insert the first window (unique constraint settles races)
    If none applies the window is active and full, and the call is denied.
    """

    MAX_ATTEMPTS = 3

    def __init__(
        self,
        session: AsyncSession,
        limit: int,
        window_seconds: int,
        clock: Optional[Clock] = None,
    ):
        super().__init__(limit, window_seconds, clock)
        self.session = session

    def _key(self, actor_id: str, operation: str):
        return (
            RateLimitWindow.user_id == actor_id,
            RateLimitWindow.function_name == operation,
        )

    async def _execute_returning(self, stmt) -> Optional[int]:
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        count = result.scalar_one_or_none()
        await self.session.commit()
        return count

    async def check(self, actor_id: str, operation: str) -> RateLimitDecision:
        try:
            return await self._check(str(actor_id), operation)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Rate limit check failed for %s/%s: %s", actor_id, operation, e)
            raise StorageUnavailable("Rate limit storage unavailable") from e

    async def _check(self, actor_id: str, operation: str) -> RateLimitDecision:
        for _ in range(self.MAX_ATTEMPTS):
            now = self.clock()
            cutoff = now - timedelta(seconds=self.window_seconds)

            count = await self._execute_returning(
                update(RateLimitWindow)
                .where(*self._key(actor_id, operation))
                .where(RateLimitWindow.window_start > cutoff)
                .where(RateLimitWindow.call_count < self.limit)
                .values(call_count=RateLimitWindow.call_count + 1, last_call_at=now)
                .returning(RateLimitWindow.call_count)
            )
            if count is not None:
                return RateLimitDecision(allowed=True, call_count=count, limit=self.limit)

            count = await self._execute_returning(
                update(RateLimitWindow)
                .where(*self._key(actor_id, operation))
                .where(RateLimitWindow.window_start <= cutoff)
                .values(window_start=now, call_count=1, last_call_at=now)
                .returning(RateLimitWindow.call_count)
            )
            if count is not None:
                return RateLimitDecision(allowed=True, call_count=count, limit=self.limit)

            row = (
                await self.session.execute(
                    select(RateLimitWindow.window_start, RateLimitWindow.call_count).where(
                        *self._key(actor_id, operation)
                    )
                )
            ).one_or_none()

            if row is None:
                try:
                    await self.session.execute(
                        insert(RateLimitWindow).values(
                            user_id=actor_id,
                            function_name=operation,
                            window_start=now,
                            call_count=1,
                            last_call_at=now,
                        )
                    )
                    await self.session.commit()
                except IntegrityError:
                    # Another caller created the window first
                    await self.session.rollback()
                    continue
                return RateLimitDecision(allowed=True, call_count=1, limit=self.limit)

            window_start = _as_utc(row.window_start)
            if window_start > cutoff and row.call_count >= self.limit:
                return RateLimitDecision(
                    allowed=False,
                    call_count=row.call_count,
                    limit=self.limit,
                    retry_after_seconds=retry_after_seconds(window_start, self.window_seconds, now),
                )
            # Window changed between statements; try again

        logger.warning("Rate limit contention for %s/%s, denying", actor_id, operation)
        return RateLimitDecision(
            allowed=False,
            call_count=self.limit,
            limit=self.limit,
            retry_after_seconds=1,
        )


# =============================================================================
# Redis Rate Limiter
# =============================================================================


WINDOW_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])
local start = tonumber(redis.call('HGET', KEYS[1], 'window_start'))
local count = tonumber(redis.call('HGET', KEYS[1], 'call_count'))
if (not start) or (now - start >= window) then
    redis.call('HSET', KEYS[1], 'window_start', ARGV[1], 'call_count', 1)
    redis.call('EXPIRE', KEYS[1], ttl)
    return {1, 1, ARGV[1]}
end
if count < limit then
    count = redis.call('HINCRBY', KEYS[1], 'call_count', 1)
    return {1, count, tostring(start)}
end
return {0, count, tostring(start)}
"""


class RedisWindowRateLimiter(WindowRateLimiter):
    """
    Rate limiter backed by one Redis hash per (actor, operation).

    The read-check-increment runs as a single Lua script.
    """

    KEY_PREFIX = "rate_limit"

    def __init__(
        self,
        redis_url: str,
        limit: int,
        window_seconds: int,
        clock: Optional[Clock] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        super().__init__(limit, window_seconds, clock)
        self.redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = client
        self._script = None

    async def get_redis(self) -> aioredis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def build_key(self, actor_id: str, operation: str) -> str:
        return f"{self.KEY_PREFIX}:{operation}:{actor_id}"

    async def check(self, actor_id: str, operation: str) -> RateLimitDecision:
        redis = await self.get_redis()
        if self._script is None:
            self._script = redis.register_script(WINDOW_SCRIPT)

        now = self.clock()
        try:
            allowed, count, window_start = await self._script(
                keys=[self.build_key(str(actor_id), operation)],
                args=[now.timestamp(), self.window_seconds, self.limit, self.window_seconds + 1],
            )
        except aioredis.RedisError as e:
            logger.error("Redis rate limit check failed for %s/%s: %s", actor_id, operation, e)
            raise StorageUnavailable("Rate limit storage unavailable") from e

        if int(allowed):
            return RateLimitDecision(allowed=True, call_count=int(count), limit=self.limit)

        start = datetime.fromtimestamp(float(window_start), tz=timezone.utc)
        return RateLimitDecision(
            allowed=False,
            call_count=int(count),
            limit=self.limit,
            retry_after_seconds=retry_after_seconds(start, self.window_seconds, now),
        )


# =============================================================================
# In-Memory Rate Limiter
# =============================================================================


class InMemoryWindowRateLimiter(WindowRateLimiter):
    """
    Single-process rate limiter.

    Only for tests and local development; counts are lost on restart and
    not shared between workers.
    """

    def __init__(self, limit: int, window_seconds: int, clock: Optional[Clock] = None):
        super().__init__(limit, window_seconds, clock)
        self._windows: dict[tuple[str, str], tuple[datetime, int]] = {}
        self._lock = asyncio.Lock()

    async def check(self, actor_id: str, operation: str) -> RateLimitDecision:
        key = (str(actor_id), operation)
        async with self._lock:
            now = self.clock()
            window = self._windows.get(key)

            if window is None or (now - window[0]).total_seconds() >= self.window_seconds:
                self._windows[key] = (now, 1)
                return RateLimitDecision(allowed=True, call_count=1, limit=self.limit)

            window_start, count = window
            if count < self.limit:
                self._windows[key] = (window_start, count + 1)
                return RateLimitDecision(allowed=True, call_count=count + 1, limit=self.limit)

            return RateLimitDecision(
                allowed=False,
                call_count=count,
                limit=self.limit,
                retry_after_seconds=retry_after_seconds(window_start, self.window_seconds, now),
            )
