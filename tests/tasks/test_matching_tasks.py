"""
Tests for the auto-match sweep and notification Celery tasks.
"""
import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from agents.delivery.models import MatchDeliveryReport
from agents.matching.exceptions import RateLimitExceeded
from agents.matching.models import SweepSummary
from backend.celery_app import TASK_ROUTES, build_beat_schedule
from backend.tasks.matching import run_auto_match_sweep
from backend.tasks.notifications import deliver_match_notification


@asynccontextmanager
async def fake_session():
    yield MagicMock()


@pytest.fixture
def patched_db():
    with patch("backend.tasks.matching.get_async_session", fake_session), patch(
        "backend.tasks.matching.close_db", new_callable=AsyncMock
    ) as close_db:
        yield close_db


class TestRunAutoMatchSweep:
    def test_returns_summary(self, patched_db):
        sweep = MagicMock()
        sweep.run = AsyncMock(return_value=SweepSummary(matches_created=3, requests_processed=4))

        with patch("backend.tasks.matching.create_auto_match_sweep", return_value=sweep):
            result = run_auto_match_sweep.run("actor-1")

        sweep.run.assert_awaited_once_with("actor-1")
        assert result["matches_created"] == 3
        assert result["requests_processed"] == 4
        assert result["rate_limited"] is False
        patched_db.assert_awaited_once()

    def test_rate_limit_is_a_result_not_a_failure(self, patched_db):
        sweep = MagicMock()
        sweep.run = AsyncMock(side_effect=RateLimitExceeded(retry_after_seconds=1200, attempts=5, limit=5))

        with patch("backend.tasks.matching.create_auto_match_sweep", return_value=sweep):
            result = run_auto_match_sweep.run("actor-1")

        assert result["rate_limited"] is True
        assert result["matches_created"] == 0
        assert result["retry_after_seconds"] == 1200
        assert "20 minutes" in result["message"]

    def test_sweep_task_is_not_retried(self):
        assert run_auto_match_sweep.max_retries == 0
        assert run_auto_match_sweep.autoretry_for == ()


class TestDeliverMatchNotification:
    def test_delivers_through_alerter(self):
        match_id = uuid4()
        notice = {
            "match_id": str(match_id),
            "supplier_id": str(uuid4()),
            "requester_id": str(uuid4()),
            "item_name": "Brake pads",
            "item_type": "part",
        }
        alerter = MagicMock()
        alerter.deliver = AsyncMock(return_value=MatchDeliveryReport(match_id=match_id))

        with patch("backend.tasks.notifications.get_async_session", fake_session), patch(
            "backend.tasks.notifications.close_db", new_callable=AsyncMock
        ), patch("backend.tasks.notifications.MatchAlerter", return_value=alerter):
            result = deliver_match_notification.run(notice)

        delivered = alerter.deliver.await_args.args[0]
        assert delivered.match_id == match_id
        assert delivered.item_type == "part"
        assert result["match_id"] == str(match_id)


class TestCeleryConfiguration:
    def test_routes(self):
        assert TASK_ROUTES["backend.tasks.notifications.deliver_match_notification"] == {"queue": "critical"}
        assert TASK_ROUTES["backend.tasks.matching.run_auto_match_sweep"] == {"queue": "high"}

    def test_beat_schedule_needs_a_system_actor(self):
        with patch("backend.celery_app.settings") as mock_settings:
            mock_settings.auto_match_system_actor_id = None
            assert "auto-match-sweep" not in build_beat_schedule()

            mock_settings.auto_match_system_actor_id = "system-actor"
            mock_settings.auto_match_schedule_minutes = 30
            schedule = build_beat_schedule()

        assert schedule["auto-match-sweep"]["args"] == ("system-actor",)
