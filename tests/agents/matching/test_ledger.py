"""
Tests for match persistence: contact matches, sweep matches and agreement.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from agents.matching.exceptions import InvalidMatchAction, ItemNotFound, StorageUnavailable, Unauthorized
from agents.matching.ledger import MatchLedger
from agents.matching.models import ItemKind, MatchCandidateScore
from backend.models import Match, MatchOrigin, MatchStatus


async def count_matches(session) -> int:
    return (await session.execute(select(func.count()).select_from(Match))).scalar_one()


class TestContactMatch:
    @pytest.mark.asyncio
    async def test_contacting_a_listing_makes_actor_the_requester(
        self, async_session, ledger, repository, factory, supplier, requester
    ):
        part = await factory.part(supplier.id)
        item = await repository.fetch_item(ItemKind.LISTING, part.id)

        match_id = await ledger.create_contact_match(requester.id, item)
        match = await async_session.get(Match, match_id)

        assert match.part_id == part.id
        assert match.request_id is None
        assert match.supplier_id == supplier.id
        assert match.requester_id == requester.id
        assert match.status == MatchStatus.PENDING
        assert match.origin == MatchOrigin.CONTACT

    @pytest.mark.asyncio
    async def test_contacting_a_request_makes_actor_the_supplier(
        self, async_session, ledger, repository, factory, supplier, requester
    ):
        request = await factory.part_request(requester.id)
        item = await repository.fetch_item(ItemKind.REQUEST, request.id)

        match_id = await ledger.create_contact_match(supplier.id, item)
        match = await async_session.get(Match, match_id)

        assert match.request_id == request.id
        assert match.supplier_id == supplier.id
        assert match.requester_id == requester.id

    @pytest.mark.asyncio
    async def test_cannot_contact_own_item(self, async_session, ledger, repository, factory, supplier):
        part = await factory.part(supplier.id)
        item = await repository.fetch_item(ItemKind.LISTING, part.id)

        with pytest.raises(InvalidMatchAction):
            await ledger.create_contact_match(supplier.id, item)
        assert await count_matches(async_session) == 0


class TestAutoMatch:
    @pytest.mark.asyncio
    async def test_same_triple_inserted_once(self, async_session, ledger, repository, factory, supplier, requester):
        part = await factory.part(supplier.id)
        request = await factory.part_request(requester.id)
        listing = await repository.fetch_item(ItemKind.LISTING, part.id)
        request_item = await repository.fetch_item(ItemKind.REQUEST, request.id)
        score = MatchCandidateScore(id=part.id, score=90, reason="Same battery")
        # The duplicate insert rolls the session back, expiring loaded rows
        expected_key = (part.id, supplier.id)

        first = await ledger.create_auto_match(request_item, listing, score)
        second = await ledger.create_auto_match(request_item, listing, score)

        assert first is not None
        assert second is None
        assert await count_matches(async_session) == 1
        assert await ledger.existing_keys(request_item.id) == {expected_key}

    @pytest.mark.asyncio
    async def test_score_and_reason_stored(self, async_session, ledger, repository, factory, supplier, requester):
        part = await factory.part(supplier.id)
        request = await factory.part_request(requester.id)
        listing = await repository.fetch_item(ItemKind.LISTING, part.id)
        request_item = await repository.fetch_item(ItemKind.REQUEST, request.id)

        match_id = await ledger.create_auto_match(
            request_item, listing, MatchCandidateScore(id=part.id, score=77.5, reason="Close enough")
        )
        match = await async_session.get(Match, match_id)

        assert match.match_score == 77.5
        assert match.reason == "Close enough"
        assert match.origin == MatchOrigin.AUTO

    @pytest.mark.asyncio
    async def test_failed_read_rolls_back_the_session(self):
        session = MagicMock()
        session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("aborted")))
        session.rollback = AsyncMock()

        with pytest.raises(StorageUnavailable):
            await MatchLedger(session).existing_keys(uuid4())
        session.rollback.assert_awaited_once()


class TestAgree:
    @pytest.fixture
    def contact_match(self, ledger, repository, factory, supplier, requester):
        async def create():
            part = await factory.part(supplier.id)
            item = await repository.fetch_item(ItemKind.LISTING, part.id)
            return await ledger.create_contact_match(requester.id, item)

        return create

    @pytest.mark.asyncio
    async def test_one_side_keeps_pending(self, ledger, contact_match, requester):
        match_id = await contact_match()

        match = await ledger.agree(match_id, requester.id)

        assert match.requester_agreed is True
        assert match.supplier_agreed is False
        assert match.status == MatchStatus.PENDING

    @pytest.mark.asyncio
    async def test_both_sides_complete_the_match(self, ledger, contact_match, supplier, requester):
        match_id = await contact_match()

        await ledger.agree(match_id, requester.id)
        match = await ledger.agree(match_id, supplier.id)

        assert match.supplier_agreed and match.requester_agreed
        assert match.status == MatchStatus.BOTH_AGREED

    @pytest.mark.asyncio
    async def test_status_never_goes_back(self, ledger, contact_match, supplier, requester):
        match_id = await contact_match()
        await ledger.agree(match_id, supplier.id)
        await ledger.agree(match_id, requester.id)

        match = await ledger.agree(match_id, requester.id)

        assert match.status == MatchStatus.BOTH_AGREED

    @pytest.mark.asyncio
    async def test_non_party_cannot_agree(self, ledger, contact_match, factory):
        match_id = await contact_match()
        stranger = await factory.profile(full_name="Stranger")

        with pytest.raises(Unauthorized):
            await ledger.agree(match_id, stranger.id)

    @pytest.mark.asyncio
    async def test_unknown_match(self, ledger, requester):
        with pytest.raises(ItemNotFound):
            await ledger.agree(uuid4(), requester.id)
