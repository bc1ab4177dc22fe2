"""
Match API Endpoints
Suggestions, auto-matching, contact and agreement.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import desc, or_, select

from agents.delivery.models import MatchNotification
from agents.matching.exceptions import RateLimitExceeded
from agents.matching.models import Listing
from backend.api.deps import (
    AsyncSessionDep,
    AutoMatchSweepDep,
    CandidateRepositoryDep,
    CurrentUser,
    DispatcherDep,
    MatchingServiceDep,
    MatchLedgerDep,
)
from backend.models import Match, MatchStatus
from backend.schemas.matches import (
    NO_SUGGESTIONS_MESSAGE,
    AutoMatchResponse,
    ContactRequest,
    MatchResponse,
    MatchSuggestion,
    RateLimitedResponse,
    SuggestionRequest,
    SuggestionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matches", tags=["Matches"])


@router.get(
    "",
    response_model=list[MatchResponse],
    summary="List matches",
    description="Matches where the current user is the supplier or the requester.",
)
async def list_matches(
    db: AsyncSessionDep,
    current_user: CurrentUser,
    match_status: Optional[MatchStatus] = Query(default=None, alias="status", description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[MatchResponse]:
    query = select(Match).where(
        or_(Match.supplier_id == current_user.id, Match.requester_id == current_user.id)
    )
    if match_status is not None:
        query = query.where(Match.status == match_status)
    query = query.order_by(desc(Match.created_at)).limit(limit)

    result = await db.execute(query)
    return [MatchResponse.model_validate(m) for m in result.scalars().all()]


@router.post(
    "/suggestions",
    response_model=SuggestionResponse,
    summary="Suggest counterparts",
    description="Rank open counterparts for one of the current user's listings or requests.",
)
async def suggest_matches(
    body: SuggestionRequest,
    current_user: CurrentUser,
    service: MatchingServiceDep,
) -> SuggestionResponse:
    """
    Interactive suggestions.

    A ranking failure yields an empty list with a message rather than an
    error; unknown items are 404.
    """
    scores = await service.find_matches(body.item_id, body.item_type, actor_id=current_user.id)
    if not scores:
        return SuggestionResponse(matches=[], message=NO_SUGGESTIONS_MESSAGE)

    return SuggestionResponse(
        matches=[MatchSuggestion(id=s.id, score=s.score, reason=s.reason) for s in scores],
        message=f"Found {len(scores)} potential matches",
    )


@router.post(
    "/auto-match",
    response_model=AutoMatchResponse,
    responses={status.HTTP_429_TOO_MANY_REQUESTS: {"model": RateLimitedResponse}},
    summary="Run auto-matching",
    description="Cross-match every active request against open listings.",
)
async def auto_match(
    current_user: CurrentUser,
    sweep: AutoMatchSweepDep,
):
    actor_id = str(current_user.id)
    try:
        summary = await sweep.run(actor_id)
    except RateLimitExceeded as e:
        logger.warning(f"Auto-match rate limited for {actor_id}: retry in {e.retry_after_seconds}s")
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=RateLimitedResponse(
                retry_after=e.retry_after_seconds,
                message=e.cooldown_message,
            ).model_dump(),
            headers={"Retry-After": str(e.retry_after_seconds)},
        )

    return AutoMatchResponse(
        success=True,
        matches_created=summary.matches_created,
        requests_processed=summary.requests_processed,
        message=f"Created {summary.matches_created} new matches",
    )


@router.post(
    "/contact",
    response_model=MatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Contact an item owner",
    description="Create a pending match with the owner of a listing or request.",
)
async def contact_owner(
    body: ContactRequest,
    db: AsyncSessionDep,
    current_user: CurrentUser,
    repository: CandidateRepositoryDep,
    ledger: MatchLedgerDep,
    dispatcher: DispatcherDep,
) -> MatchResponse:
    item = await repository.fetch_item(body.item_type, body.item_id)
    match_id = await ledger.create_contact_match(current_user.id, item)

    match = await db.get(Match, match_id)

    dispatcher.dispatch(
        MatchNotification(
            match_id=match.id,
            supplier_id=match.supplier_id,
            requester_id=match.requester_id,
            item_name=item.part_name,
            item_type="part" if isinstance(item, Listing) else "request",
        )
    )

    return MatchResponse.model_validate(match)


@router.post(
    "/{match_id}/agree",
    response_model=MatchResponse,
    summary="Agree to a match",
    description="Record the current user's agreement. Both parties agreeing completes the match.",
)
async def agree_to_match(
    match_id: UUID,
    current_user: CurrentUser,
    ledger: MatchLedgerDep,
) -> MatchResponse:
    match = await ledger.agree(match_id, current_user.id)
    return MatchResponse.model_validate(match)


