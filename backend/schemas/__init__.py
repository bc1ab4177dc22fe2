"""
PartsConnect Pydantic Schemas
Request/Response models for API endpoints.
"""
from backend.schemas.matches import (
    NO_SUGGESTIONS_MESSAGE,
    AutoMatchResponse,
    ContactRequest,
    ItemReference,
    MatchResponse,
    MatchSuggestion,
    RateLimitedResponse,
    SuggestionRequest,
    SuggestionResponse,
)

__all__ = [
    "NO_SUGGESTIONS_MESSAGE",
    "AutoMatchResponse",
    "ContactRequest",
    "ItemReference",
    "MatchResponse",
    "MatchSuggestion",
    "RateLimitedResponse",
    "SuggestionRequest",
    "SuggestionResponse",
]
