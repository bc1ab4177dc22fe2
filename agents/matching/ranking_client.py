"""
Ranking Client
Calls the reasoning model with a forced tool call and validates what comes back.
"""
import asyncio
import time
from typing import Any, Optional

import anthropic
import structlog
from pydantic import ValidationError

from .exceptions import MatchingConfigurationError, RankingFailed
from .models import MatchCandidateScore, RankingRequest, rank_order

logger = structlog.get_logger().bind(component="ranking_client")


class RankingClient:
    """
    Schema-constrained ranking over the Anthropic Messages API.

    The model output is treated as untrusted input:
    - the tool call is forced, so parsing never scrapes free text
    - entries with unknown ids, out-of-range scores or missing fields are dropped
    - a response without a usable tool call raises RankingFailed

    No retries happen here; callers decide whether re-ranking is acceptable.
    """

    def __init__(
        self,
        client: Any,
        model: str,
        max_tokens: int = 2048,
        timeout_seconds: float = 30.0,
    ):
        """
        Initialize ranking client.

        Args:
            client: anthropic.AsyncAnthropic (or a compatible fake).
            model: Model identifier.
            max_tokens: Completion token budget.
            timeout_seconds: Upper bound on a single call.
        """
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_api_key(
        cls,
        api_key: Optional[str],
        model: str,
        max_tokens: int = 2048,
        timeout_seconds: float = 30.0,
    ) -> "RankingClient":
        """
        Build a client for the hosted endpoint.

        Raises:
            MatchingConfigurationError: No API key configured.
        """
        if not api_key:
            raise MatchingConfigurationError(
                "Reasoning endpoint credentials are not configured",
                setting="anthropic_api_key",
            )
        client = anthropic.AsyncAnthropic(
            api_key=api_key,
            max_retries=0,
            timeout=timeout_seconds,
        )
        return cls(client, model=model, max_tokens=max_tokens, timeout_seconds=timeout_seconds)

    async def rank(self, request: RankingRequest) -> list[MatchCandidateScore]:
        """
        Rank the candidates described by a RankingRequest.

        Args:
            request: Prompt built by PromptBuilder.

        Returns:
            Valid scores, best first, at most request.max_results long.

        Raises:
            RankingFailed: Timeout, non-2xx, transport error, or no usable tool call.
        """
        if not request.candidate_ids:
            return []

        start_time = time.time()
        log = logger.bind(source_id=str(request.source_id), source_kind=request.source_kind.value)

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=request.system_prompt,
                    messages=[{"role": "user", "content": request.content}],
                    tools=[request.tool],
                    tool_choice={"type": "tool", "name": request.tool_name},
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            log.error("ranking_timeout", timeout_seconds=self.timeout_seconds)
            raise RankingFailed(f"Ranking call timed out after {self.timeout_seconds}s") from e
        except anthropic.APIStatusError as e:
            log.error("ranking_api_error", status_code=e.status_code, error=str(e))
            raise RankingFailed(f"Ranking endpoint returned {e.status_code}") from e
        except anthropic.APIError as e:
            log.error("ranking_api_error", error=str(e))
            raise RankingFailed(f"Ranking endpoint error: {e}") from e

        raw_matches = self._extract_matches(response, request.tool_name)
        scores = self.validate(raw_matches, request)

        log.info(
            "ranking_complete",
            candidates=len(request.candidate_ids),
            returned=len(raw_matches),
            accepted=len(scores),
            latency_ms=round((time.time() - start_time) * 1000, 1),
        )

        return scores

    def _extract_matches(self, response: Any, tool_name: str) -> list[Any]:
        """Pull the matches array out of the forced tool call."""
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) != "tool_use" or getattr(block, "name", None) != tool_name:
                continue
            payload = block.input
            if not isinstance(payload, dict) or not isinstance(payload.get("matches"), list):
                logger.error("ranking_payload_malformed", payload_type=type(payload).__name__)
                raise RankingFailed("Tool call payload is missing a matches array")
            return payload["matches"]

        logger.error("ranking_tool_call_missing", stop_reason=getattr(response, "stop_reason", None))
        raise RankingFailed(f"No {tool_name} tool call in ranking response")

    def validate(self, raw_matches: list[Any], request: RankingRequest) -> list[MatchCandidateScore]:
        """
        Keep only well-formed entries that reference enumerated candidates.

        Args:
            raw_matches: Entries as returned by the model.
            request: The request the entries answer.

        Returns:
            Accepted scores in rank order, truncated to max_results.
        """
        allowed = set(request.candidate_ids)
        accepted: list[MatchCandidateScore] = []
        seen = set()

        for entry in raw_matches:
            if not isinstance(entry, dict):
                logger.warning("ranking_entry_dropped", reason="not_an_object")
                continue
            try:
                score = MatchCandidateScore.model_validate(entry)
            except ValidationError as e:
                logger.warning(
                    "ranking_entry_dropped",
                    reason="invalid_fields",
                    entry_id=str(entry.get("id")),
                    error_count=e.error_count(),
                )
                continue
            if score.id not in allowed:
                logger.warning("ranking_entry_dropped", reason="unknown_id", entry_id=str(score.id))
                continue
            if score.id in seen:
                logger.warning("ranking_entry_dropped", reason="duplicate_id", entry_id=str(score.id))
                continue
            seen.add(score.id)
            accepted.append(score)

        return rank_order(accepted, request.candidate_ids)[: request.max_results]
