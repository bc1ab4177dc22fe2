"""
Match schemas for suggestions, auto-matching, contact and agreement.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from agents.matching.models import ItemKind
from backend.models import MatchOrigin, MatchStatus

NO_SUGGESTIONS_MESSAGE = "No suggestions available"


class ItemReference(BaseModel):
    """Identifies a listing or a request."""

    item_id: UUID = Field(..., description="Listing or request id")
    item_type: ItemKind = Field(..., description="'listing' or 'request'")


class SuggestionRequest(ItemReference):
    """Request body for interactive suggestions."""


class ContactRequest(ItemReference):
    """Request body for contacting the owner of an item."""


class MatchSuggestion(BaseModel):
    """One ranked counterpart."""

    id: UUID = Field(..., description="Candidate item id")
    score: float = Field(..., ge=0, le=100, description="Match score (0-100)")
    reason: str = Field(..., description="Why this is a good match")


class SuggestionResponse(BaseModel):
    """Suggestions, best first. Empty list means nothing suitable right now."""

    matches: list[MatchSuggestion] = Field(default_factory=list)
    message: Optional[str] = None


class AutoMatchResponse(BaseModel):
    """Outcome of a sweep triggered over HTTP."""

    success: bool = True
    matches_created: int = 0
    requests_processed: int = 0
    message: str


class RateLimitedResponse(BaseModel):
    """Body returned with HTTP 429."""

    retry_after: int = Field(..., description="Seconds until another call is allowed")
    message: str


class MatchResponse(BaseModel):
    """Schema for a stored match."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Match ID")
    part_id: Optional[UUID] = Field(None, description="Listing ID")
    request_id: Optional[UUID] = Field(None, description="Request ID")
    supplier_id: UUID
    requester_id: UUID
    status: MatchStatus
    supplier_agreed: bool
    requester_agreed: bool
    match_score: Optional[float] = Field(None, description="Ranking score for sweep matches")
    reason: Optional[str] = None
    origin: MatchOrigin
    created_at: Optional[datetime] = None
