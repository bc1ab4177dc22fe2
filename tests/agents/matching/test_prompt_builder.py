"""
Tests for the ranking prompt builder.
"""
import pytest
from decimal import Decimal
from uuid import uuid4

from agents.matching.models import CandidateSet, CounterpartyProfile, ItemKind, Listing, PartRequestItem
from agents.matching.prompt_builder import (
    COMPARISON_DIMENSIONS,
    RETURN_MATCHES_TOOL,
    SYSTEM_PROMPT,
    PromptBuilder,
)
from backend.models import PartCategory


def make_request(**overrides) -> PartRequestItem:
    values = dict(
        id=uuid4(),
        owner_id=uuid4(),
        part_name="iPhone 13 battery",
        category=PartCategory.PHONE,
        max_price=Decimal("20"),
    )
    values.update(overrides)
    return PartRequestItem(**values)


def make_listing(**overrides) -> Listing:
    values = dict(
        id=uuid4(),
        owner_id=uuid4(),
        part_name="iPhone 13 Battery - New",
        category=PartCategory.PHONE,
        condition="new",
        price=Decimal("18"),
        owner=CounterpartyProfile(profile_id=uuid4(), full_name="Ade", trade_type="phone technician"),
    )
    values.update(overrides)
    return Listing(**values)


def candidate_set(source, items) -> CandidateSet:
    return CandidateSet(
        source_id=source.id,
        source_owner_id=source.owner_id,
        kind=source.kind.opposite,
        items=items,
    )


class TestBuild:
    def test_text_block_comes_first_and_lists_every_candidate(self):
        source = make_request()
        listings = [make_listing(part_name=f"Battery {i}") for i in range(3)]

        request = PromptBuilder().build(source, candidate_set(source, listings), max_results=5)

        assert request.system_prompt == SYSTEM_PROMPT
        text = request.content[0]["text"]
        assert request.content[0]["type"] == "text"
        assert "PART REQUEST" in text
        assert "Max Price: $20.00" in text
        for i, listing in enumerate(listings, 1):
            assert f"{i}. {listing.part_name} (ID: {listing.id})" in text
        assert request.candidate_ids == [l.id for l in listings]

    def test_comparison_dimensions_in_order(self):
        source = make_request()
        request = PromptBuilder().build(source, candidate_set(source, [make_listing()]), max_results=3)
        text = request.content[0]["text"]

        positions = [text.index(d) for d in COMPARISON_DIMENSIONS]
        assert positions == sorted(positions)

    def test_same_inputs_produce_same_prompt(self):
        source = make_request()
        candidates = candidate_set(source, [make_listing(), make_listing(part_name="Other")])
        builder = PromptBuilder()

        assert builder.build(source, candidates, 5) == builder.build(source, candidates, 5)

    def test_listing_source_describes_requests(self):
        source = make_listing()
        requests = [make_request(condition_preference="used")]

        request = PromptBuilder().build(source, candidate_set(source, requests), max_results=5)
        text = request.content[0]["text"]

        assert "AVAILABLE PART" in text
        assert "PART REQUESTS" in text
        assert "Condition Preference: used" in text

    def test_wrong_candidate_kind_rejected(self):
        source = make_request()
        wrong = CandidateSet(
            source_id=source.id,
            source_owner_id=source.owner_id,
            kind=ItemKind.REQUEST,
            items=[make_request()],
        )

        with pytest.raises(ValueError):
            PromptBuilder().build(source, wrong, max_results=5)

    def test_car_part_fitment_included(self):
        source = make_request(category=PartCategory.CAR, part_name="Alternator")
        listing = make_listing(
            category=PartCategory.CAR,
            part_name="Alternator 90A",
            vehicle_make="Toyota",
            vehicle_model="Corolla",
            vehicle_year_from=2010,
            vehicle_year_to=2014,
        )

        request = PromptBuilder().build(source, candidate_set(source, [listing]), max_results=5)

        assert "Toyota Corolla (2010-2014)" in request.content[0]["text"]


class TestImages:
    def test_images_follow_text_with_labels(self):
        source = make_request(image_url="https://img.example.com/req.jpg")
        listing = make_listing(image_url="https://img.example.com/part.jpg")

        request = PromptBuilder().build(source, candidate_set(source, [listing]), max_results=5)
        images = [b for b in request.content if b["type"] == "image"]

        assert request.content[0]["type"] == "text"
        assert [b["source"]["url"] for b in images] == [
            "https://img.example.com/req.jpg",
            "https://img.example.com/part.jpg",
        ]
        labels = [b["text"] for b in request.content[1:] if b["type"] == "text"]
        assert any(str(listing.id) in label for label in labels)

    def test_candidate_images_capped(self):
        source = make_request()
        listings = [make_listing(image_url=f"https://img.example.com/{i}.jpg") for i in range(8)]

        request = PromptBuilder(max_images=5).build(source, candidate_set(source, listings), max_results=5)

        assert sum(1 for b in request.content if b["type"] == "image") == 5

    def test_no_images_means_single_text_block(self):
        source = make_request()
        request = PromptBuilder().build(source, candidate_set(source, [make_listing()]), max_results=5)

        assert len(request.content) == 1


class TestTool:
    def test_tool_restricts_ids_and_result_count(self):
        source = make_request()
        listings = [make_listing(), make_listing()]

        request = PromptBuilder().build(source, candidate_set(source, listings), max_results=3)
        schema = request.tool["input_schema"]["properties"]["matches"]

        assert request.tool_name == RETURN_MATCHES_TOOL
        assert schema["maxItems"] == 3
        assert schema["items"]["properties"]["id"]["enum"] == [str(l.id) for l in listings]
        assert schema["items"]["properties"]["score"]["maximum"] == 100
