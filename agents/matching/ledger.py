"""
Match Ledger
Writes to the matches table: sweep matches, contact matches and agreements.
"""
from typing import Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.models import Match, MatchOrigin, MatchStatus

from .exceptions import InvalidMatchAction, ItemNotFound, StorageUnavailable, Unauthorized
from .models import Listing, MatchCandidateScore, PartRequestItem

logger = structlog.get_logger().bind(component="match_ledger")

MatchKey = tuple[Optional[UUID], UUID]


class MatchLedger:
    """
    Match persistence.

    Every write is one statement followed by a commit. Uniqueness of
    (request, part, supplier) is enforced by the table, so concurrent
    writers cannot create duplicates.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def existing_keys(self, request_id: UUID) -> set[MatchKey]:
        """
        (part_id, supplier_id) pairs already matched to a request.
        """
        query = select(Match.part_id, Match.supplier_id).where(Match.request_id == request_id)
        try:
            rows = (await self.session.execute(query)).all()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("existing_matches_fetch_failed", request_id=str(request_id), error=str(e))
            raise StorageUnavailable(f"Failed to load matches for request {request_id}") from e
        return {(row.part_id, row.supplier_id) for row in rows}

    async def create_auto_match(
        self,
        request: PartRequestItem,
        listing: Listing,
        score: MatchCandidateScore,
    ) -> Optional[UUID]:
        """
        Insert a sweep match.

        Returns:
            The new match id, or None when the triple already exists.

        Raises:
            StorageUnavailable: The write failed for any other reason.
        """
        return await self._insert(
            part_id=listing.id,
            request_id=request.id,
            supplier_id=listing.owner_id,
            requester_id=request.owner_id,
            match_score=score.score,
            reason=score.reason,
            origin=MatchOrigin.AUTO,
        )

    async def create_contact_match(
        self,
        actor_id: UUID,
        item: Union[Listing, PartRequestItem],
    ) -> Optional[UUID]:
        """
        Record a "contact" on someone else's item.

        Contacting a listing makes the actor the requester; contacting a
        request makes the actor the supplier.

        Returns:
            The new match id.

        Raises:
            InvalidMatchAction: The actor owns the item.
        """
        if item.owner_id == actor_id:
            raise InvalidMatchAction("You cannot contact yourself about your own item")

        if isinstance(item, Listing):
            values = dict(
                part_id=item.id,
                request_id=None,
                supplier_id=item.owner_id,
                requester_id=actor_id,
            )
        else:
            values = dict(
                part_id=None,
                request_id=item.id,
                supplier_id=actor_id,
                requester_id=item.owner_id,
            )

        return await self._insert(origin=MatchOrigin.CONTACT, **values)

    async def agree(self, match_id: UUID, actor_id: UUID) -> Match:
        """
        Record the actor's agreement to a match.

        The flag is set and the status recomputed in one conditional
        update, so the status never goes back from both_agreed.

        Raises:
            ItemNotFound: Unknown match.
            Unauthorized: The actor is not a party to the match.
        """
        try:
            match = (
                await self.session.execute(select(Match).where(Match.id == match_id))
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("match_fetch_failed", match_id=str(match_id), error=str(e))
            raise StorageUnavailable(f"Failed to load match {match_id}") from e

        if match is None:
            raise ItemNotFound("match", match_id)

        if actor_id == match.supplier_id:
            other_flag = Match.requester_agreed
            values = {"supplier_agreed": True}
        elif actor_id == match.requester_id:
            other_flag = Match.supplier_agreed
            values = {"requester_agreed": True}
        else:
            raise Unauthorized("Not a party to this match")

        stmt = (
            update(Match)
            .where(Match.id == match_id)
            .values(
                status=case(
                    (other_flag.is_(True), MatchStatus.BOTH_AGREED.value),
                    else_=Match.status,
                ),
                **values,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("match_agree_failed", match_id=str(match_id), error=str(e))
            raise StorageUnavailable(f"Failed to record agreement on {match_id}") from e

        await self.session.refresh(match)

        logger.info(
            "match_agreed",
            match_id=str(match_id),
            actor_id=str(actor_id),
            status=match.status.value,
        )

        return match

    async def _insert(self, **values) -> Optional[UUID]:
        stmt = insert(Match).values(status=MatchStatus.PENDING, **values).returning(Match.id)
        try:
            match_id = (await self.session.execute(stmt)).scalar_one()
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info(
                "match_already_exists",
                request_id=str(values.get("request_id")),
                part_id=str(values.get("part_id")),
            )
            return None
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("match_insert_failed", error=str(e))
            raise StorageUnavailable("Failed to create match") from e

        logger.info(
            "match_created",
            match_id=str(match_id),
            origin=values["origin"].value,
            request_id=str(values.get("request_id")),
            part_id=str(values.get("part_id")),
        )
        return match_id
