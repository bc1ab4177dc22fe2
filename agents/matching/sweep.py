"""
Auto-Match Sweep
Batch cross-matching of every active request against open listings.
"""
import time
from typing import Any, Optional, Protocol

import structlog

from agents.delivery.models import MatchNotification

from .exceptions import RankingFailed, RateLimitExceeded, StorageUnavailable, Unauthorized
from .ledger import MatchLedger
from .models import Listing, PartRequestItem, SweepSummary
from .prompt_builder import PromptBuilder
from .ranking_client import RankingClient
from .repository import CandidateRepository

logger = structlog.get_logger().bind(agent="auto_match_sweep")


class RateLimiter(Protocol):
    async def check(self, actor_id: str, operation: str) -> Any: ...


class Notifier(Protocol):
    def dispatch(self, notice: MatchNotification) -> None: ...


class SecurityLog(Protocol):
    async def log_event(
        self,
        event_type: str,
        event_category: str,
        severity: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None: ...


class AutoMatchSweep:
    """
    Auto-match sweep.

    State flow:
    1. Rate-limit check for the invoking actor (denial aborts the run)
    2. Load every active request, oldest first
    3. Per request: candidates -> rank -> dedupe -> create -> notify
    4. Stop once the per-run match cap is reached

    A ranking or storage failure on one request is logged and the sweep
    moves on. Matches already created stay committed.
    """

    OPERATION = "auto-match-parts"

    def __init__(
        self,
        repository: CandidateRepository,
        ledger: MatchLedger,
        prompt_builder: PromptBuilder,
        ranking_client: RankingClient,
        rate_limiter: RateLimiter,
        notifier: Notifier,
        security_log: SecurityLog,
        score_threshold: float = 70.0,
        per_request_limit: int = 3,
        max_matches_per_run: int = 20,
    ):
        """
        Initialize sweep.

        Args:
            repository: Candidate repository.
            ledger: Match ledger.
            prompt_builder: Prompt builder.
            ranking_client: Ranking client.
            rate_limiter: Sliding-window limiter keyed by (actor, operation).
            notifier: Fire-and-forget notification dispatcher.
            security_log: Security event log.
            score_threshold: Minimum score (0-100, inclusive) for a match.
            per_request_limit: Maximum ranked candidates per request.
            max_matches_per_run: Hard cap on matches created per run.
        """
        self.repository = repository
        self.ledger = ledger
        self.prompt_builder = prompt_builder
        self.ranking_client = ranking_client
        self.rate_limiter = rate_limiter
        self.notifier = notifier
        self.security_log = security_log
        self.score_threshold = score_threshold
        self.per_request_limit = per_request_limit
        self.max_matches_per_run = max_matches_per_run

    async def run(self, actor_id: Optional[str]) -> SweepSummary:
        """
        Run one sweep on behalf of an actor.

        Args:
            actor_id: Authenticated invoking actor.

        Returns:
            SweepSummary with the number of matches created.

        Raises:
            Unauthorized: No actor identity.
            RateLimitExceeded: The actor used up the window.
            StorageUnavailable: Active requests could not be loaded.
        """
        if not actor_id:
            raise Unauthorized("Auto-matching requires an authenticated actor")

        start_time = time.time()
        actor_id = str(actor_id)
        log = logger.bind(actor_id=actor_id)

        await self._check_rate_limit(actor_id)

        await self.security_log.log_event(
            event_type="auto_match_triggered",
            event_category="matching",
            severity="low",
            user_id=actor_id,
        )

        requests = await self.repository.fetch_active_requests()
        summary = SweepSummary()

        log.info("sweep_started", active_requests=len(requests))

        for request in requests:
            if summary.matches_created >= self.max_matches_per_run:
                summary.reached_match_cap = True
                log.info("sweep_match_cap_reached", cap=self.max_matches_per_run)
                break

            try:
                await self._process_request(request, summary)
            except (RankingFailed, StorageUnavailable) as e:
                summary.requests_failed += 1
                log.error(
                    "sweep_request_failed",
                    request_id=str(request.id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            summary.requests_processed += 1

        if summary.matches_created >= self.max_matches_per_run:
            summary.reached_match_cap = True

        summary.processing_time_seconds = round(time.time() - start_time, 3)

        log.info(
            "sweep_complete",
            matches_created=summary.matches_created,
            requests_processed=summary.requests_processed,
            requests_failed=summary.requests_failed,
            duplicates_skipped=summary.duplicates_skipped,
            processing_time_seconds=summary.processing_time_seconds,
        )

        return summary

    async def _check_rate_limit(self, actor_id: str) -> None:
        decision = await self.rate_limiter.check(actor_id, self.OPERATION)
        if decision.allowed:
            return

        error = RateLimitExceeded(
            retry_after_seconds=decision.retry_after_seconds,
            attempts=decision.call_count,
            limit=decision.limit,
        )
        await self.security_log.log_event(
            event_type="rate_limit_exceeded",
            event_category="security",
            severity="medium",
            user_id=actor_id,
            details={
                "function": self.OPERATION,
                "attempts": decision.call_count,
                "max_allowed": decision.limit,
                "retry_after_seconds": decision.retry_after_seconds,
                "time_remaining_minutes": error.retry_after_minutes,
            },
        )
        logger.warning(
            "sweep_rate_limited",
            actor_id=actor_id,
            attempts=decision.call_count,
            retry_after_seconds=decision.retry_after_seconds,
        )
        raise error

    async def _process_request(self, request: PartRequestItem, summary: SweepSummary) -> None:
        candidates = await self.repository.fetch_open_candidates(request)
        if not len(candidates):
            return

        existing = await self.ledger.existing_keys(request.id)
        ranking_request = self.prompt_builder.build(request, candidates, self.per_request_limit)
        scores = await self.ranking_client.rank(ranking_request)

        for score in scores:
            if summary.matches_created >= self.max_matches_per_run:
                summary.reached_match_cap = True
                return

            if score.score < self.score_threshold:
                continue

            listing = candidates.get(score.id)
            if not isinstance(listing, Listing):
                continue

            key = (listing.id, listing.owner_id)
            if key in existing:
                summary.duplicates_skipped += 1
                continue

            match_id = await self.ledger.create_auto_match(request, listing, score)
            if match_id is None:
                # Lost a race with a concurrent writer
                summary.duplicates_skipped += 1
                continue

            existing.add(key)
            summary.matches_created += 1

            self.notifier.dispatch(
                MatchNotification(
                    match_id=match_id,
                    supplier_id=listing.owner_id,
                    requester_id=request.owner_id,
                    item_name=request.part_name,
                    item_type="request",
                )
            )
