"""
Tests for the match API endpoints.
"""
import pytest
from uuid import uuid4

from agents.matching.factory import create_matching_service
from backend.api.deps import get_matching_service
from backend.core.config import Settings
from backend.main import app
from tests.fixtures import score_all


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.post(
            "/api/matches/suggestions", json={"item_id": str(uuid4()), "item_type": "request"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get("/api/matches", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_ranked_suggestions(self, client, auth_headers, fake_anthropic, factory, supplier, requester):
        part = await factory.part(supplier.id)
        request = await factory.part_request(requester.id)
        fake_anthropic.messages.responder = score_all(88, "Same battery model")

        response = await client.post(
            "/api/matches/suggestions",
            json={"item_id": str(request.id), "item_type": "request"},
            headers=auth_headers(requester),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["matches"] == [{"id": str(part.id), "score": 88.0, "reason": "Same battery model"}]

    @pytest.mark.asyncio
    async def test_nothing_to_rank(self, client, auth_headers, factory, requester):
        request = await factory.part_request(requester.id)

        response = await client.post(
            "/api/matches/suggestions",
            json={"item_id": str(request.id), "item_type": "request"},
            headers=auth_headers(requester),
        )

        assert response.status_code == 200
        assert response.json() == {"matches": [], "message": "No suggestions available"}

    @pytest.mark.asyncio
    async def test_ranking_failure_degrades(self, client, auth_headers, fake_anthropic, factory, supplier, requester):
        from tests.fixtures import text_response

        await factory.part(supplier.id)
        request = await factory.part_request(requester.id)
        fake_anthropic.messages.responder = lambda call: text_response("Sorry")

        response = await client.post(
            "/api/matches/suggestions",
            json={"item_id": str(request.id), "item_type": "request"},
            headers=auth_headers(requester),
        )

        assert response.status_code == 200
        assert response.json()["matches"] == []

    @pytest.mark.asyncio
    async def test_unknown_item(self, client, auth_headers, requester):
        response = await client.post(
            "/api/matches/suggestions",
            json={"item_id": str(uuid4()), "item_type": "listing"},
            headers=auth_headers(requester),
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_item_type(self, client, auth_headers, requester):
        response = await client.post(
            "/api/matches/suggestions",
            json={"item_id": str(uuid4()), "item_type": "gadget"},
            headers=auth_headers(requester),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_credentials_is_server_error(self, client, auth_headers, async_session, requester):
        request_headers = auth_headers(requester)
        app.dependency_overrides[get_matching_service] = lambda: create_matching_service(
            async_session, config=Settings(anthropic_api_key=None)
        )

        response = await client.post(
            "/api/matches/suggestions",
            json={"item_id": str(uuid4()), "item_type": "request"},
            headers=request_headers,
        )

        assert response.status_code == 500


class TestAutoMatch:
    @pytest.mark.asyncio
    async def test_creates_matches_and_notifies(
        self, client, auth_headers, fake_anthropic, transport, factory, supplier, requester
    ):
        await factory.part(supplier.id)
        await factory.part_request(requester.id)
        fake_anthropic.messages.responder = score_all(90)

        response = await client.post("/api/matches/auto-match", headers=auth_headers(requester))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["matches_created"] == 1
        assert body["requests_processed"] == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_sixth_call_is_rate_limited(self, client, auth_headers, requester):
        headers = auth_headers(requester)
        for _ in range(5):
            assert (await client.post("/api/matches/auto-match", headers=headers)).status_code == 200

        response = await client.post("/api/matches/auto-match", headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["retry_after"] > 0
        assert response.headers["Retry-After"] == str(body["retry_after"])
        assert "60 minutes" in body["message"]


class TestContactAndAgree:
    @pytest.mark.asyncio
    async def test_contact_listing_then_both_agree(
        self, client, auth_headers, transport, factory, supplier, requester
    ):
        part = await factory.part(supplier.id, part_name="Samsung TV power board")

        response = await client.post(
            "/api/matches/contact",
            json={"item_id": str(part.id), "item_type": "listing"},
            headers=auth_headers(requester),
        )
        assert response.status_code == 201
        match = response.json()
        assert match["supplier_id"] == str(supplier.id)
        assert match["requester_id"] == str(requester.id)
        assert match["status"] == "pending"
        assert transport.sent[0].item_type == "part"
        assert transport.sent[0].item_name == "Samsung TV power board"

        first = await client.post(f"/api/matches/{match['id']}/agree", headers=auth_headers(requester))
        assert first.json()["status"] == "pending"

        second = await client.post(f"/api/matches/{match['id']}/agree", headers=auth_headers(supplier))
        assert second.status_code == 200
        assert second.json()["status"] == "both_agreed"

    @pytest.mark.asyncio
    async def test_contact_own_item_rejected(self, client, auth_headers, factory, supplier):
        part = await factory.part(supplier.id)

        response = await client.post(
            "/api/matches/contact",
            json={"item_id": str(part.id), "item_type": "listing"},
            headers=auth_headers(supplier),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_stranger_cannot_agree(self, client, auth_headers, factory, supplier, requester):
        request = await factory.part_request(requester.id)
        stranger = await factory.profile(full_name="Stranger")
        created = await client.post(
            "/api/matches/contact",
            json={"item_id": str(request.id), "item_type": "request"},
            headers=auth_headers(supplier),
        )

        response = await client.post(
            f"/api/matches/{created.json()['id']}/agree", headers=auth_headers(stranger)
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_list_only_own_matches(self, client, auth_headers, factory, supplier, requester):
        part = await factory.part(supplier.id)
        outsider = await factory.profile(full_name="Outsider")
        await client.post(
            "/api/matches/contact",
            json={"item_id": str(part.id), "item_type": "listing"},
            headers=auth_headers(requester),
        )

        mine = await client.get("/api/matches", headers=auth_headers(supplier))
        theirs = await client.get("/api/matches", headers=auth_headers(outsider))

        assert len(mine.json()) == 1
        assert theirs.json() == []
