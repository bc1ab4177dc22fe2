"""
Matching Engine Pydantic Models
Data models for items, candidate sets, ranking requests and ranked results.
"""
import math
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Iterable, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from backend.models import PartCategory


class ItemKind(str, Enum):
    """Which side of the marketplace an item belongs to."""

    LISTING = "listing"
    REQUEST = "request"

    @property
    def opposite(self) -> "ItemKind":
        if self is ItemKind.LISTING:
            return ItemKind.REQUEST
        return ItemKind.LISTING


class CounterpartyProfile(BaseModel):
    """
    Public profile fields of an item owner.

    Shown to the ranking model as the reputation signal.
    """

    profile_id: UUID
    full_name: Optional[str] = None
    trade_type: str = "general"
    is_verified: bool = False

    def describe(self) -> str:
        name = self.full_name or "Unknown"
        verified = ", verified" if self.is_verified else ""
        return f"{name} ({self.trade_type}{verified})"


class _ItemBase(BaseModel):
    id: UUID = Field(..., description="Item identifier")
    owner_id: UUID = Field(..., description="Supplier id for listings, requester id for requests")
    part_name: str = Field(..., min_length=1)
    category: PartCategory
    description: Optional[str] = None
    location: Optional[str] = None
    image_url: Optional[str] = Field(
        default=None,
        description="Optional photo; supplementary evidence only",
    )
    owner: Optional[CounterpartyProfile] = None
    created_at: Optional[datetime] = None


class Listing(_ItemBase):
    """A supplier-owned part offered for sale."""

    kind: Literal[ItemKind.LISTING] = ItemKind.LISTING
    condition: str
    price: Optional[Decimal] = None
    status: Literal["available", "sold"] = "available"
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_year_from: Optional[int] = None
    vehicle_year_to: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.status == "available"

    def vehicle_fitment(self) -> Optional[str]:
        """Describe vehicle compatibility for car parts, if recorded."""
        if not (self.vehicle_make or self.vehicle_model):
            return None
        text = " ".join(p for p in (self.vehicle_make, self.vehicle_model) if p)
        if self.vehicle_year_from and self.vehicle_year_to:
            text += f" ({self.vehicle_year_from}-{self.vehicle_year_to})"
        elif self.vehicle_year_from:
            text += f" ({self.vehicle_year_from}+)"
        return text


class PartRequestItem(_ItemBase):
    """A requester-owned statement of a part being sought."""

    kind: Literal[ItemKind.REQUEST] = ItemKind.REQUEST
    condition_preference: Optional[str] = None
    max_price: Optional[Decimal] = None
    status: Literal["active", "fulfilled"] = "active"

    @property
    def is_open(self) -> bool:
        return self.status == "active"


Item = Annotated[Union[Listing, PartRequestItem], Field(discriminator="kind")]


class CandidateSet(BaseModel):
    """
    Open items from the opposite collection, excluding the source owner's items.

    Enumeration order is the order the ranking model sees.
    """

    source_id: UUID
    source_owner_id: UUID
    kind: ItemKind = Field(..., description="Kind of the candidates (opposite of the source)")
    items: list[Item] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def ids(self) -> list[UUID]:
        return [item.id for item in self.items]

    def get(self, item_id: UUID) -> Optional[Union[Listing, PartRequestItem]]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def with_images(self) -> list[Union[Listing, PartRequestItem]]:
        return [item for item in self.items if item.image_url]


class MatchCandidateScore(BaseModel):
    """
    One ranked candidate returned by the reasoning model.

    Scores are on the canonical 0-100 scale.
    """

    id: UUID = Field(..., description="Candidate item id")
    score: float = Field(..., ge=0.0, le=100.0, description="Match quality from 0-100")
    reason: str = Field(..., min_length=1, description="Brief explanation of the match")

    @field_validator("score", mode="before")
    @classmethod
    def reject_non_numeric_score(cls, v: Any) -> Any:
        """Refuse strings and booleans rather than coercing them."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("score must be a number")
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("score must be finite")
        return v

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v


class RankingRequest(BaseModel):
    """
    Fully built, provider-ready ranking prompt.

    Produced by PromptBuilder, consumed by RankingClient.
    """

    source_id: UUID
    source_kind: ItemKind
    system_prompt: str
    content: list[dict[str, Any]] = Field(
        ...,
        description="Multimodal user message blocks (text first, then images)",
    )
    candidate_ids: list[UUID] = Field(..., description="Enumeration order of candidates")
    max_results: int = Field(..., ge=1, le=20)
    tool: dict[str, Any] = Field(..., description="Structured-output tool declaration")

    @property
    def tool_name(self) -> str:
        return self.tool["name"]


class SweepSummary(BaseModel):
    """Outcome of one auto-match sweep run."""

    matches_created: int = 0
    requests_processed: int = 0
    requests_failed: int = 0
    duplicates_skipped: int = 0
    reached_match_cap: bool = False
    processing_time_seconds: float = 0.0


def rank_order(
    scores: Iterable[MatchCandidateScore],
    candidate_ids: list[UUID],
) -> list[MatchCandidateScore]:
    """
    Sort scores descending, breaking ties by candidate enumeration order.

    Args:
        scores: Validated scores.
        candidate_ids: Enumeration order used in the prompt.

    Returns:
        New list in deterministic rank order.
    """
    position = {candidate_id: index for index, candidate_id in enumerate(candidate_ids)}
    return sorted(
        scores,
        key=lambda s: (-s.score, position.get(s.id, len(position))),
    )
