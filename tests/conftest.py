"""
PartsConnect Test Configuration and Fixtures
Shared pytest fixtures for all test modules.
"""
import os

# Settings are cached on first import, so the environment is fixed up front
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

import tempfile
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agents.delivery.dispatcher import NotificationDispatcher
from agents.matching.ledger import MatchLedger
from agents.matching.prompt_builder import PromptBuilder
from agents.matching.ranking_client import RankingClient
from agents.matching.repository import CandidateRepository
from backend.models import Base
from tests.fixtures import FakeAnthropic, MarketplaceFactory


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create an async SQLite engine for testing."""
    # Use a unique temp file for each test to ensure complete isolation
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()

    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest_asyncio.fixture(scope="function")
async def session_factory(async_engine):
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def factory(async_session) -> MarketplaceFactory:
    return MarketplaceFactory(async_session)


# =============================================================================
# Marketplace Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def supplier(factory):
    return await factory.profile(
        full_name="Ade Phone Repairs",
        phone_number="+234 801 234 5678",
        trade_type="phone technician",
        is_verified=True,
    )


@pytest_asyncio.fixture
async def requester(factory):
    return await factory.profile(full_name="Bola Buyer", phone_number="+2348098765432")


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def fake_anthropic() -> FakeAnthropic:
    """Fake client that returns no matches until a responder is set."""
    return FakeAnthropic()


@pytest.fixture
def ranking_client(fake_anthropic) -> RankingClient:
    return RankingClient(fake_anthropic, model="test-model", timeout_seconds=5.0)


@pytest.fixture
def prompt_builder() -> PromptBuilder:
    return PromptBuilder(max_images=5)


@pytest.fixture
def repository(async_session) -> CandidateRepository:
    return CandidateRepository(async_session, max_candidates=50)


@pytest.fixture
def ledger(async_session) -> MatchLedger:
    return MatchLedger(async_session)


class RecordingTransport:
    """Notification transport that keeps what it was given."""

    def __init__(self):
        self.sent = []

    async def __call__(self, notice) -> None:
        self.sent.append(notice)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport) -> NotificationDispatcher:
    return NotificationDispatcher(transport=transport)


class FakeClock:
    """Settable UTC clock for window arithmetic."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
