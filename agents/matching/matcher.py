"""
Interactive Matching Service
On-demand suggestions for a single listing or request.
"""
import time
from typing import Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import ItemNotFound, RankingFailed
from .models import ItemKind, MatchCandidateScore, rank_order
from .prompt_builder import PromptBuilder
from .ranking_client import RankingClient
from .repository import CandidateRepository

logger = structlog.get_logger().bind(agent="matcher")


class MatchingService:
    """
    Interactive matching engine.

    Flow:
    1. Load the source item (and check the caller owns it)
    2. Load open candidates from the opposite collection
    3. Rank them with the reasoning model

    Ranking failures degrade to an empty suggestion list; storage failures
    and unknown items propagate to the caller.
    """

    def __init__(
        self,
        repository: CandidateRepository,
        prompt_builder: PromptBuilder,
        ranking_client: RankingClient,
        max_results: int = 5,
        ranking_attempts: int = 2,
        retry_wait_seconds: float = 0.5,
    ):
        """
        Initialize matching service.

        Args:
            repository: Candidate repository.
            prompt_builder: Prompt builder.
            ranking_client: Ranking client.
            max_results: Maximum suggestions returned.
            ranking_attempts: Ranking calls made before giving up.
            retry_wait_seconds: Base backoff between ranking attempts.
        """
        self.repository = repository
        self.prompt_builder = prompt_builder
        self.ranking_client = ranking_client
        self.max_results = max_results
        self.ranking_attempts = ranking_attempts
        self.retry_wait_seconds = retry_wait_seconds

    async def find_matches(
        self,
        item_id: UUID,
        kind: ItemKind,
        actor_id: Optional[UUID] = None,
    ) -> list[MatchCandidateScore]:
        """
        Rank counterparts for a listing or request.

        Args:
            item_id: Source item id.
            kind: Whether the source is a listing or a request.
            actor_id: When given, the source must be owned by this profile.

        Returns:
            Up to max_results scores, best first. Empty when there are no
            candidates or ranking failed.

        Raises:
            ItemNotFound: Unknown item, or not owned by actor_id.
            StorageUnavailable: Reading items failed.
        """
        start_time = time.time()
        log = logger.bind(item_id=str(item_id), kind=kind.value)

        source = await self.repository.fetch_item(kind, item_id)
        if actor_id is not None and source.owner_id != actor_id:
            # Do not reveal that someone else's item exists
            log.warning("suggestions_not_owner", actor_id=str(actor_id))
            raise ItemNotFound(kind.value, item_id)

        candidates = await self.repository.fetch_open_candidates(source)
        if not len(candidates):
            log.info("no_candidates")
            return []

        request = self.prompt_builder.build(source, candidates, self.max_results)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.ranking_attempts),
                wait=wait_exponential(multiplier=self.retry_wait_seconds, max=5),
                retry=retry_if_exception_type(RankingFailed),
                reraise=True,
            ):
                with attempt:
                    scores = await self.ranking_client.rank(request)
        except RankingFailed as e:
            log.error("ranking_failed", error=str(e), attempts=self.ranking_attempts)
            return []

        results = rank_order(scores, request.candidate_ids)[: self.max_results]

        log.info(
            "suggestions_complete",
            candidates=len(candidates),
            suggestions=len(results),
            processing_time_ms=round((time.time() - start_time) * 1000, 1),
        )

        return results
