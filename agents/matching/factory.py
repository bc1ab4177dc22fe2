"""
Matching Engine Wiring
Builds engine components from application settings.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.core.config import Settings, settings as default_settings
from backend.core.rate_limit import (
    DatabaseWindowRateLimiter,
    InMemoryWindowRateLimiter,
    RedisWindowRateLimiter,
    WindowRateLimiter,
)
from backend.services.audit import SecurityEventLog

from .exceptions import MatchingConfigurationError
from .ledger import MatchLedger
from .matcher import MatchingService
from .prompt_builder import PromptBuilder
from .ranking_client import RankingClient
from .repository import CandidateRepository
from .sweep import AutoMatchSweep, Notifier

# Shared across calls so counts survive between requests in one process
_memory_limiter: Optional[InMemoryWindowRateLimiter] = None


def create_ranking_client(config: Settings = default_settings) -> RankingClient:
    """
    Raises:
        MatchingConfigurationError: No Anthropic API key.
    """
    return RankingClient.from_api_key(
        config.anthropic_api_key,
        model=config.llm_model,
        max_tokens=config.llm_max_tokens,
        timeout_seconds=config.ranking_timeout_seconds,
    )


def create_rate_limiter(session: AsyncSession, config: Settings = default_settings) -> WindowRateLimiter:
    """Build the configured auto-match rate limiter backend."""
    global _memory_limiter

    backend = config.rate_limit_backend.lower()
    limit = config.auto_match_rate_limit_calls
    window = config.auto_match_rate_limit_window

    if backend == "database":
        return DatabaseWindowRateLimiter(session, limit=limit, window_seconds=window)
    if backend == "redis":
        return RedisWindowRateLimiter(config.redis_url, limit=limit, window_seconds=window)
    if backend == "memory":
        if _memory_limiter is None:
            _memory_limiter = InMemoryWindowRateLimiter(limit=limit, window_seconds=window)
        return _memory_limiter

    raise MatchingConfigurationError(
        f"Unknown rate limit backend: {config.rate_limit_backend}",
        setting="rate_limit_backend",
    )


def create_matching_service(
    session: AsyncSession,
    config: Settings = default_settings,
    ranking_client: Optional[RankingClient] = None,
) -> MatchingService:
    """Interactive matching service over a database session."""
    return MatchingService(
        repository=CandidateRepository(session, max_candidates=config.max_candidates_per_prompt),
        prompt_builder=PromptBuilder(max_images=config.max_prompt_images),
        ranking_client=ranking_client or create_ranking_client(config),
        max_results=config.interactive_match_limit,
        ranking_attempts=config.interactive_ranking_attempts,
    )


def create_auto_match_sweep(
    session: AsyncSession,
    notifier: Notifier,
    config: Settings = default_settings,
    ranking_client: Optional[RankingClient] = None,
    rate_limiter: Optional[WindowRateLimiter] = None,
) -> AutoMatchSweep:
    """
    Auto-match sweep over a database session.

    Raises:
        MatchingConfigurationError: Missing credentials or unknown limiter backend.
    """
    return AutoMatchSweep(
        repository=CandidateRepository(session, max_candidates=config.max_candidates_per_prompt),
        ledger=MatchLedger(session),
        prompt_builder=PromptBuilder(max_images=config.max_prompt_images),
        ranking_client=ranking_client or create_ranking_client(config),
        rate_limiter=rate_limiter or create_rate_limiter(session, config),
        notifier=notifier,
        security_log=SecurityEventLog(session),
        score_threshold=config.sweep_score_threshold,
        per_request_limit=config.sweep_match_limit,
        max_matches_per_run=config.sweep_max_matches_per_run,
    )
