"""
Ranking Prompt Builder
Turns a source item and its candidate set into a multimodal, schema-bound prompt.
"""
from decimal import Decimal
from typing import Any, Optional, Union

from .models import (
    CandidateSet,
    ItemKind,
    Listing,
    PartRequestItem,
    RankingRequest,
)

SYSTEM_PROMPT = (
    "You are an expert spare-parts matching assistant for a peer-to-peer marketplace. "
    "Analyze text descriptions and, where provided, images to find the best matches. "
    "Images are supporting evidence only; always weigh the written details."
)

RETURN_MATCHES_TOOL = "return_matches"

# Order is part of the prompt contract; do not reorder.
COMPARISON_DIMENSIONS: tuple[str, ...] = (
    "Part name similarity (exact, partial, or semantic matches)",
    "Category match",
    "Price compatibility",
    "Condition match",
    "Location proximity",
    "Description relevance",
    "Visual similarity if images are available",
    "Counterparty reputation",
)

SCORING_GUIDELINES = """Scoring Guidelines:
- 90-100: Same part, compatible price and condition
- 70-89: Strong fit with minor gaps (e.g. slightly over budget, different condition)
- 40-69: Related part or significant gaps
- 0-39: Poor fit"""


def _money(value: Optional[Decimal], missing: str) -> str:
    if value is None:
        return missing
    return f"${value:,.2f}"


def _text(value: Optional[str], missing: str) -> str:
    return value if value else missing


class PromptBuilder:
    """
    Builds RankingRequests.

    The candidate enumeration is 1-based and follows CandidateSet order, so
    the same inputs always produce the same prompt.
    """

    def __init__(self, max_images: int = 5):
        """
        Initialize builder.

        Args:
            max_images: Maximum number of candidate images attached per prompt.
        """
        self.max_images = max_images

    def build(
        self,
        source: Union[Listing, PartRequestItem],
        candidates: CandidateSet,
        max_results: int,
    ) -> RankingRequest:
        """
        Build the ranking request for a source item.

        Args:
            source: Item being matched.
            candidates: Opposite-side candidates.
            max_results: Upper bound on entries the model may return.

        Returns:
            RankingRequest ready for RankingClient.rank().
        """
        if candidates.kind is not source.kind.opposite:
            raise ValueError(
                f"Candidates of kind {candidates.kind.value} cannot be ranked against a {source.kind.value}"
            )

        content: list[dict[str, Any]] = [
            {"type": "text", "text": self._task_text(source, candidates, max_results)},
        ]
        content.extend(self._image_blocks(source, candidates))

        return RankingRequest(
            source_id=source.id,
            source_kind=source.kind,
            system_prompt=SYSTEM_PROMPT,
            content=content,
            candidate_ids=candidates.ids,
            max_results=max_results,
            tool=self.build_tool(candidates, max_results),
        )

    def build_tool(self, candidates: CandidateSet, max_results: int) -> dict[str, Any]:
        """
        Structured-output declaration the model is forced to call.

        Candidate ids are listed as an enum; the client still checks membership.
        """
        return {
            "name": RETURN_MATCHES_TOOL,
            "description": "Return the top matches with scores and reasons",
            "input_schema": {
                "type": "object",
                "properties": {
                    "matches": {
                        "type": "array",
                        "maxItems": max_results,
                        "items": {
                            "type": "object",
                            "properties": {
                                "id": {
                                    "type": "string",
                                    "enum": [str(candidate_id) for candidate_id in candidates.ids],
                                    "description": "ID of the matched candidate, copied from the list",
                                },
                                "score": {
                                    "type": "number",
                                    "minimum": 0,
                                    "maximum": 100,
                                    "description": "Match quality score from 0-100",
                                },
                                "reason": {
                                    "type": "string",
                                    "description": "Brief explanation of why this is a good match",
                                },
                            },
                            "required": ["id", "score", "reason"],
                            "additionalProperties": False,
                        },
                    }
                },
                "required": ["matches"],
                "additionalProperties": False,
            },
        }

    def _task_text(
        self,
        source: Union[Listing, PartRequestItem],
        candidates: CandidateSet,
        max_results: int,
    ) -> str:
        if isinstance(source, PartRequestItem):
            intro = "You are matching a part request with available parts."
            source_heading = "PART REQUEST"
            candidates_heading = "AVAILABLE PARTS"
            noun = "parts"
        else:
            intro = "You are matching an available part with open part requests."
            source_heading = "AVAILABLE PART"
            candidates_heading = "PART REQUESTS"
            noun = "requests"

        enumerated = "\n".join(
            self._describe_candidate(i, item) for i, item in enumerate(candidates.items, 1)
        )
        dimensions = "\n".join(f"{i}. {d}" for i, d in enumerate(COMPARISON_DIMENSIONS, 1))

        return f"""{intro}

{source_heading}:
{self._describe_source(source)}

{candidates_heading}:
{enumerated}

Analyze these {noun} and return at most {max_results} best matches. Consider, in order:
{dimensions}

{SCORING_GUIDELINES}

Call the {RETURN_MATCHES_TOOL} tool with your answer. Use only IDs from the list above. \
If nothing fits, return an empty matches array."""

    def _describe_source(self, source: Union[Listing, PartRequestItem]) -> str:
        if isinstance(source, PartRequestItem):
            lines = [
                f"- Part Name: {source.part_name}",
                f"- Category: {source.category.value}",
                f"- Max Price: {_money(source.max_price, 'Not specified')}",
                f"- Condition Preference: {_text(source.condition_preference, 'Any')}",
                f"- Location: {_text(source.location, 'Not specified')}",
                f"- Description: {_text(source.description, 'None')}",
                f"- Has Image: {'Yes' if source.image_url else 'No'}",
            ]
        else:
            lines = [
                f"- Part Name: {source.part_name}",
                f"- Category: {source.category.value}",
                f"- Price: {_money(source.price, 'Not listed')}",
                f"- Condition: {source.condition}",
                f"- Location: {_text(source.location, 'Not specified')}",
                f"- Description: {_text(source.description, 'None')}",
                f"- Has Image: {'Yes' if source.image_url else 'No'}",
            ]
            fitment = source.vehicle_fitment()
            if fitment:
                lines.append(f"- Vehicle Fitment: {fitment}")
        return "\n".join(lines)

    def _describe_candidate(self, index: int, item: Union[Listing, PartRequestItem]) -> str:
        owner = item.owner.describe() if item.owner else "Unknown (general)"
        if isinstance(item, Listing):
            lines = [
                f"{index}. {item.part_name} (ID: {item.id})",
                f"   - Category: {item.category.value}",
                f"   - Price: {_money(item.price, 'Not listed')}",
                f"   - Condition: {item.condition}",
                f"   - Location: {_text(item.location, 'Not specified')}",
                f"   - Description: {_text(item.description, 'None')}",
                f"   - Has Image: {'Yes' if item.image_url else 'No'}",
                f"   - Supplier: {owner}",
            ]
            fitment = item.vehicle_fitment()
            if fitment:
                lines.append(f"   - Vehicle Fitment: {fitment}")
        else:
            lines = [
                f"{index}. {item.part_name} (ID: {item.id})",
                f"   - Category: {item.category.value}",
                f"   - Max Price: {_money(item.max_price, 'Not specified')}",
                f"   - Condition Preference: {_text(item.condition_preference, 'Any')}",
                f"   - Location: {_text(item.location, 'Not specified')}",
                f"   - Description: {_text(item.description, 'None')}",
                f"   - Has Image: {'Yes' if item.image_url else 'No'}",
                f"   - Requester: {owner}",
            ]
        return "\n".join(lines)

    def _image_blocks(
        self,
        source: Union[Listing, PartRequestItem],
        candidates: CandidateSet,
    ) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []

        if source.image_url:
            blocks.append({"type": "text", "text": f"Image of the source item: {source.part_name}"})
            blocks.append(_image_block(source.image_url))

        with_images = candidates.with_images()[: self.max_images]
        if with_images:
            blocks.append({"type": "text", "text": "Images of candidates for visual comparison:"})
            for item in with_images:
                blocks.append({"type": "text", "text": f"Candidate: {item.part_name} (ID: {item.id})"})
                blocks.append(_image_block(item.image_url))

        return blocks


def _image_block(url: str) -> dict[str, Any]:
    return {"type": "image", "source": {"type": "url", "url": url}}
