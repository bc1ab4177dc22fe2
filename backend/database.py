"""
PartsConnect Database Connection Setup

One async engine is shared by the API process. Celery tasks run each job in
a fresh event loop, so they open sessions through get_async_session() and
dispose of the engine with close_db() before the loop closes.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.core.config import settings
from backend.models import Base

# =============================================================================
# Engine and Session Factory
# =============================================================================

async_engine = create_async_engine(
    settings.async_database_url,
    echo=settings.debug,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# Loaded match rows are returned to the API after the ledger commits
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Per-request session for the match routes.

    The repository, ledger, limiter and audit log share this session and
    commit their own statements; whatever is still pending when the route
    fails is rolled back.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for Celery tasks (auto-match sweep, match notification emails).

    Usage:
        async with get_async_session() as session:
            sweep = create_auto_match_sweep(session, dispatcher)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# =============================================================================
# Lifecycle
# =============================================================================


async def init_db() -> None:
    """
    Create the marketplace tables for local development.

    Deployed databases are created by the Alembic migration.
    """
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of pooled connections (app shutdown, end of each Celery task)."""
    await async_engine.dispose()
