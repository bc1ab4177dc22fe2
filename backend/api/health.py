"""
PartsConnect Health Check Endpoints
Liveness and dependency readiness for the matching API.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backend.core.config import settings
from backend.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


# =============================================================================
# Health Status Models
# =============================================================================


class HealthStatus(str, Enum):
    """Health status values for components and overall system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Health status for an individual component."""

    status: HealthStatus
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Readiness response."""

    status: HealthStatus
    timestamp: str
    started_at: Optional[str] = None
    components: dict[str, ComponentHealth]
    version: str


class LivenessResponse(BaseModel):
    status: str


# =============================================================================
# Application State
# =============================================================================

_startup_time: Optional[datetime] = None


def mark_startup_complete() -> None:
    """Mark the application as started. Called from the app lifespan."""
    global _startup_time
    _startup_time = datetime.now(timezone.utc)


def get_startup_time() -> Optional[datetime]:
    return _startup_time


# =============================================================================
# Health Check Functions
# =============================================================================


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


async def check_database() -> ComponentHealth:
    """Run SELECT 1 against the listings database."""
    start_time = time.perf_counter()
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            latency_ms=_elapsed_ms(start_time),
            message=f"Database connection failed: {e}",
        )
    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        latency_ms=_elapsed_ms(start_time),
        message="Database connection successful",
    )


async def check_redis() -> ComponentHealth:
    """
    PING the Redis instance.

    Redis backs the Celery broker and optionally the rate limiter, so
    an outage degrades sweeps and notifications but not suggestions.
    """
    start_time = time.perf_counter()
    redis_client = aioredis.from_url(
        settings.redis_url,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
    )
    try:
        await redis_client.ping()
    except (aioredis.RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            latency_ms=_elapsed_ms(start_time),
            message=f"Redis connection failed: {e}",
        )
    finally:
        await redis_client.aclose()
    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        latency_ms=_elapsed_ms(start_time),
        message="Redis connection successful",
    )


def determine_overall_status(components: dict[str, ComponentHealth]) -> HealthStatus:
    """
    Database down is unhealthy; anything else short of healthy is degraded.
    """
    database = components.get("database")
    if database and database.status == HealthStatus.UNHEALTHY:
        return HealthStatus.UNHEALTHY

    if any(c.status != HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.DEGRADED

    return HealthStatus.HEALTHY


# =============================================================================
# Router Definition
# =============================================================================

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "",
    response_model=LivenessResponse,
    summary="Basic liveness check",
    description="Returns OK if the service is running.",
)
async def basic_health() -> LivenessResponse:
    return LivenessResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness check",
    description="Verifies the database and Redis are reachable.",
    responses={
        200: {"description": "Ready, possibly degraded"},
        503: {"description": "Database unreachable or still starting"},
    },
)
async def readiness_check(response: Response) -> HealthResponse:
    db_check, redis_check = await asyncio.gather(check_database(), check_redis())
    components = {"database": db_check, "redis": redis_check}

    overall_status = determine_overall_status(components)
    startup_time = get_startup_time()

    if overall_status == HealthStatus.UNHEALTHY or startup_time is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        started_at=startup_time.isoformat() if startup_time else None,
        components=components,
        version=settings.app_version,
    )
