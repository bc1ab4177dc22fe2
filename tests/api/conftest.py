"""
API test fixtures.
The app runs against the per-test SQLite session with engine wiring overridden.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agents.delivery.dispatcher import NotificationDispatcher
from agents.matching.factory import create_auto_match_sweep, create_matching_service
from backend.api.deps import (
    DispatcherDep,
    create_access_token,
    get_auto_match_sweep,
    get_matching_service,
    get_notification_dispatcher,
)
from backend.core.config import Settings
from backend.core.rate_limit import InMemoryWindowRateLimiter
from backend.database import get_db
from backend.main import app


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        anthropic_api_key="sk-test",
        rate_limit_backend="memory",
        auto_match_rate_limit_calls=5,
        auto_match_rate_limit_window=3600,
    )


@pytest.fixture
def api_limiter(clock) -> InMemoryWindowRateLimiter:
    return InMemoryWindowRateLimiter(limit=5, window_seconds=3600, clock=clock)


@pytest_asyncio.fixture
async def client(async_session, ranking_client, transport, api_limiter, test_settings):
    async def override_get_db():
        yield async_session

    async def override_dispatcher():
        dispatcher = NotificationDispatcher(transport=transport)
        try:
            yield dispatcher
        finally:
            await dispatcher.drain()

    def override_matching_service():
        return create_matching_service(async_session, config=test_settings, ranking_client=ranking_client)

    def override_sweep(dispatcher: DispatcherDep):
        return create_auto_match_sweep(
            async_session,
            dispatcher,
            config=test_settings,
            ranking_client=ranking_client,
            rate_limiter=api_limiter,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = override_dispatcher
    app.dependency_overrides[get_matching_service] = override_matching_service
    app.dependency_overrides[get_auto_match_sweep] = override_sweep

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def headers_for(profile) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(profile.id)}"}

    return headers_for
