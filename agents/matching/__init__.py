"""
Matching Agent Module
Listing/request matching with schema-constrained LLM ranking and the auto-match sweep.
"""
from .exceptions import (
    InvalidMatchAction,
    ItemNotFound,
    MatchingConfigurationError,
    MatchingError,
    RankingFailed,
    RateLimitExceeded,
    StorageUnavailable,
    Unauthorized,
)
from .ledger import MatchLedger
from .matcher import MatchingService
from .models import (
    CandidateSet,
    CounterpartyProfile,
    ItemKind,
    Listing,
    MatchCandidateScore,
    PartRequestItem,
    RankingRequest,
    SweepSummary,
    rank_order,
)
from .prompt_builder import PromptBuilder
from .ranking_client import RankingClient
from .repository import CandidateRepository
from .sweep import AutoMatchSweep

__all__ = [
    # Services
    "MatchingService",
    "AutoMatchSweep",
    # Components
    "CandidateRepository",
    "MatchLedger",
    "PromptBuilder",
    "RankingClient",
    # Models
    "CandidateSet",
    "CounterpartyProfile",
    "ItemKind",
    "Listing",
    "MatchCandidateScore",
    "PartRequestItem",
    "RankingRequest",
    "SweepSummary",
    "rank_order",
    # Errors
    "InvalidMatchAction",
    "ItemNotFound",
    "MatchingConfigurationError",
    "MatchingError",
    "RankingFailed",
    "RateLimitExceeded",
    "StorageUnavailable",
    "Unauthorized",
]
