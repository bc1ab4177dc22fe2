"""
Tests for the auto-match sweep.
"""
import pytest
from sqlalchemy import func, select

from agents.matching.exceptions import RateLimitExceeded, StorageUnavailable, Unauthorized
from agents.matching.ranking_client import RankingClient
from agents.matching.sweep import AutoMatchSweep
from backend.core.rate_limit import InMemoryWindowRateLimiter
from backend.models import Match, MatchOrigin, SecurityEvent
from backend.services.audit import SecurityEventLog
from tests.fixtures import FakeAnthropic, candidate_ids_from, score_all, text_response


async def count_matches(session) -> int:
    return (await session.execute(select(func.count()).select_from(Match))).scalar_one()


@pytest.fixture
def build_sweep(async_session, repository, ledger, prompt_builder, dispatcher, clock):
    def build(fake, limiter=None, **overrides) -> AutoMatchSweep:
        return AutoMatchSweep(
            repository=repository,
            ledger=ledger,
            prompt_builder=prompt_builder,
            ranking_client=RankingClient(fake, model="test-model"),
            rate_limiter=limiter or InMemoryWindowRateLimiter(limit=5, window_seconds=3600, clock=clock),
            notifier=dispatcher,
            security_log=SecurityEventLog(async_session),
            **overrides,
        )

    return build


class TestSweepMatching:
    @pytest.mark.asyncio
    async def test_battery_request_matches_cheaper_listing(
        self, async_session, build_sweep, factory, supplier, requester, dispatcher, transport
    ):
        part = await factory.part(supplier.id, part_name="iPhone 13 Battery - New", price="18")
        request = await factory.part_request(requester.id, part_name="iPhone 13 battery", max_price="20")
        part_id, request_id, supplier_id, requester_id = part.id, request.id, supplier.id, requester.id
        sweep = build_sweep(FakeAnthropic(score_all(85)))

        summary = await sweep.run(str(requester_id))
        await dispatcher.drain()

        assert summary.matches_created == 1
        assert summary.requests_processed == 1
        match = (await async_session.execute(select(Match))).scalar_one()
        assert (match.part_id, match.request_id) == (part_id, request_id)
        assert match.origin == MatchOrigin.AUTO
        assert match.match_score == 85

        notice = transport.sent[0]
        assert notice.supplier_id == supplier_id
        assert notice.requester_id == requester_id
        assert notice.item_name == "iPhone 13 battery"
        assert notice.item_type == "request"

    @pytest.mark.asyncio
    async def test_second_run_creates_no_duplicates(
        self, async_session, build_sweep, factory, supplier, requester, dispatcher, transport
    ):
        await factory.part(supplier.id)
        await factory.part_request(requester.id)
        actor_id = str(requester.id)
        sweep = build_sweep(FakeAnthropic(score_all(90)))

        first = await sweep.run(actor_id)
        second = await sweep.run(actor_id)
        await dispatcher.drain()

        assert first.matches_created == 1
        assert second.matches_created == 0
        assert second.duplicates_skipped == 1
        assert await count_matches(async_session) == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score,created", [(69.9, 0), (70, 1), (100, 1)])
    async def test_threshold_is_inclusive(self, async_session, build_sweep, factory, supplier, requester, score, created):
        await factory.part(supplier.id)
        await factory.part_request(requester.id)
        sweep = build_sweep(FakeAnthropic(score_all(score)))

        summary = await sweep.run(str(requester.id))

        assert summary.matches_created == created

    @pytest.mark.asyncio
    async def test_per_run_cap(self, async_session, build_sweep, factory, supplier, requester, dispatcher, transport):
        for i in range(3):
            await factory.part(supplier.id, part_name=f"Battery {i}")
        for i in range(10):
            await factory.part_request(requester.id, part_name=f"Battery wanted {i}")
        actor_id = str(requester.id)
        sweep = build_sweep(FakeAnthropic(score_all(95)), max_matches_per_run=20, per_request_limit=3)

        summary = await sweep.run(actor_id)
        await dispatcher.drain()

        assert summary.matches_created == 20
        assert summary.reached_match_cap is True
        assert await count_matches(async_session) == 20
        assert len(transport.sent) == 20

    @pytest.mark.asyncio
    async def test_one_failed_request_does_not_stop_the_sweep(
        self, async_session, build_sweep, factory, supplier, requester
    ):
        await factory.part(supplier.id)
        await factory.part_request(requester.id, part_name="First")
        await factory.part_request(requester.id, part_name="Second")
        respond_ok = score_all(90)
        calls = []

        def respond(call):
            calls.append(call)
            if len(calls) == 1:
                return text_response("I could not decide")
            return respond_ok(call)

        sweep = build_sweep(FakeAnthropic(respond))

        summary = await sweep.run(str(requester.id))

        assert summary.requests_failed == 1
        assert summary.requests_processed == 1
        assert summary.matches_created == 1

    @pytest.mark.asyncio
    async def test_malformed_rows_do_not_abort_the_sweep(
        self, async_session, build_sweep, factory, supplier, requester
    ):
        good_part = await factory.part(supplier.id)
        blank_part = await factory.part(supplier.id, part_name="")
        await factory.part_request(requester.id, part_name="")
        request = await factory.part_request(requester.id)
        good_part_id, blank_part_id, request_id = good_part.id, blank_part.id, request.id
        fake = FakeAnthropic(score_all(90))
        sweep = build_sweep(fake)

        summary = await sweep.run(str(requester.id))

        assert summary.matches_created == 1
        assert summary.requests_processed == 1
        assert summary.requests_failed == 0
        assert candidate_ids_from(fake.calls[0]) == [str(good_part_id)]
        match = (await async_session.execute(select(Match))).scalar_one()
        assert (match.part_id, match.request_id) == (good_part_id, request_id)
        assert match.part_id != blank_part_id

    @pytest.mark.asyncio
    async def test_storage_failure_on_one_request_is_isolated(
        self, build_sweep, repository, factory, supplier, requester
    ):
        await factory.part(supplier.id)
        await factory.part_request(requester.id, part_name="First")
        await factory.part_request(requester.id, part_name="Second")
        fetch_candidates = repository.fetch_open_candidates
        calls = []

        async def flaky_fetch(source):
            calls.append(source.id)
            if len(calls) == 1:
                raise StorageUnavailable("read failed")
            return await fetch_candidates(source)

        repository.fetch_open_candidates = flaky_fetch
        sweep = build_sweep(FakeAnthropic(score_all(90)))

        summary = await sweep.run(str(requester.id))

        assert len(calls) == 2
        assert summary.requests_failed == 1
        assert summary.matches_created == 1

    @pytest.mark.asyncio
    async def test_no_active_requests(self, build_sweep, factory, supplier):
        await factory.part(supplier.id)
        fake = FakeAnthropic(score_all(90))
        sweep = build_sweep(fake)

        summary = await sweep.run(str(supplier.id))

        assert summary.matches_created == 0
        assert fake.calls == []


class TestSweepGuards:
    @pytest.mark.asyncio
    async def test_requires_an_actor(self, build_sweep):
        sweep = build_sweep(FakeAnthropic())

        with pytest.raises(Unauthorized):
            await sweep.run(None)

    @pytest.mark.asyncio
    async def test_trigger_is_audited(self, async_session, build_sweep, requester):
        actor_id = str(requester.id)
        sweep = build_sweep(FakeAnthropic())

        await sweep.run(actor_id)

        events = (await async_session.execute(select(SecurityEvent))).scalars().all()
        assert [(e.event_type, e.severity, e.user_id) for e in events] == [("auto_match_triggered", "low", actor_id)]

    @pytest.mark.asyncio
    async def test_rate_limited_run_is_rejected_and_logged(self, async_session, build_sweep, requester, clock):
        actor_id = str(requester.id)
        limiter = InMemoryWindowRateLimiter(limit=1, window_seconds=3600, clock=clock)
        sweep = build_sweep(FakeAnthropic(), limiter=limiter)
        await sweep.run(actor_id)
        clock.advance(600)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await sweep.run(actor_id)

        assert exc_info.value.retry_after_seconds == 3000
        assert exc_info.value.retry_after_minutes == 50
        event = (
            await async_session.execute(
                select(SecurityEvent).where(SecurityEvent.event_type == "rate_limit_exceeded")
            )
        ).scalar_one()
        assert event.event_category == "security"
        assert event.severity == "medium"
        assert event.details["function"] == "auto-match-parts"
        assert event.details["attempts"] == 1
        assert event.details["max_allowed"] == 1
        assert event.details["time_remaining_minutes"] == 50
