"""
Candidate Repository
Read-only access to listings, requests and owner profiles.
"""
from typing import Any, Callable, Optional, Sequence, Union
from uuid import UUID

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.models import ListingStatus, Part, PartRequest, Profile, RequestStatus

from .exceptions import ItemNotFound, StorageUnavailable
from .models import CandidateSet, CounterpartyProfile, ItemKind, Listing, PartRequestItem

logger = structlog.get_logger().bind(component="candidate_repository")


def _profile(row: Optional[Profile]) -> Optional[CounterpartyProfile]:
    if row is None:
        return None
    return CounterpartyProfile(
        profile_id=row.id,
        full_name=row.full_name,
        trade_type=row.trade_type or "general",
        is_verified=bool(row.is_verified),
    )


def listing_from_row(row: Part) -> Listing:
    """Map a parts row (with supplier loaded) to a Listing."""
    return Listing(
        id=row.id,
        owner_id=row.supplier_id,
        part_name=row.part_name,
        category=row.category,
        condition=row.condition,
        price=row.price,
        description=row.description,
        location=row.location,
        image_url=row.image_url,
        vehicle_make=row.vehicle_make,
        vehicle_model=row.vehicle_model,
        vehicle_year_from=row.vehicle_year_from,
        vehicle_year_to=row.vehicle_year_to,
        status=row.status.value,
        owner=_profile(row.supplier),
        created_at=row.created_at,
    )


def request_from_row(row: PartRequest) -> PartRequestItem:
    """Map a part_requests row (with requester loaded) to a PartRequestItem."""
    return PartRequestItem(
        id=row.id,
        owner_id=row.requester_id,
        part_name=row.part_name,
        category=row.category,
        condition_preference=row.condition_preference,
        max_price=row.max_price,
        description=row.description,
        location=row.location,
        image_url=row.image_url,
        status=row.status.value,
        owner=_profile(row.requester),
        created_at=row.created_at,
    )


def convert_rows(rows: Sequence[Any], convert: Callable[[Any], Any], kind: ItemKind) -> list:
    """
    Map rows to engine items, skipping rows that fail validation.

    A malformed row (e.g. an empty part name) is logged and left out so it
    can neither be ranked nor stop the other rows from being used.
    """
    items = []
    for row in rows:
        try:
            items.append(convert(row))
        except ValidationError as e:
            logger.warning(
                "invalid_row_skipped",
                kind=kind.value,
                row_id=str(row.id),
                error_count=e.error_count(),
                error=str(e),
            )
    return items


class CandidateRepository:
    """
    Read-only accessor over listings, requests and profiles.

    Storage errors surface as StorageUnavailable; an empty result always
    means there really were no rows.
    """

    def __init__(self, session: AsyncSession, max_candidates: int = 50):
        """
        Initialize repository.

        Args:
            session: Async database session.
            max_candidates: Upper bound on candidates returned per query.
        """
        self.session = session
        self.max_candidates = max_candidates

    async def fetch_item(self, kind: ItemKind, item_id: UUID) -> Union[Listing, PartRequestItem]:
        """
        Fetch a single listing or request by id.

        Raises:
            ItemNotFound: No row with that id.
            StorageUnavailable: The read failed.
        """
        if kind is ItemKind.LISTING:
            query = select(Part).options(selectinload(Part.supplier)).where(Part.id == item_id)
        else:
            query = (
                select(PartRequest)
                .options(selectinload(PartRequest.requester))
                .where(PartRequest.id == item_id)
            )

        try:
            row = (await self.session.execute(query)).scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("item_fetch_failed", kind=kind.value, item_id=str(item_id), error=str(e))
            raise StorageUnavailable(f"Failed to load {kind.value} {item_id}") from e

        if row is None:
            raise ItemNotFound(kind.value, item_id)

        convert = listing_from_row if kind is ItemKind.LISTING else request_from_row
        items = convert_rows([row], convert, kind)
        if not items:
            # Unusable for matching
            raise ItemNotFound(kind.value, item_id)
        return items[0]

    async def fetch_open_candidates(self, source: Union[Listing, PartRequestItem]) -> CandidateSet:
        """
        Fetch open items from the collection opposite to the source.

        Items owned by the source's owner are never returned.

        Args:
            source: Item being matched.

        Returns:
            CandidateSet ordered newest first.
        """
        if source.kind is ItemKind.REQUEST:
            query = (
                select(Part)
                .options(selectinload(Part.supplier))
                .where(Part.status == ListingStatus.AVAILABLE)
                .where(Part.supplier_id != source.owner_id)
                .order_by(Part.created_at.desc(), Part.id)
                .limit(self.max_candidates)
            )
            convert = listing_from_row
        else:
            query = (
                select(PartRequest)
                .options(selectinload(PartRequest.requester))
                .where(PartRequest.status == RequestStatus.ACTIVE)
                .where(PartRequest.requester_id != source.owner_id)
                .order_by(PartRequest.created_at.desc(), PartRequest.id)
                .limit(self.max_candidates)
            )
            convert = request_from_row

        try:
            rows = (await self.session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "candidate_fetch_failed",
                source_id=str(source.id),
                source_kind=source.kind.value,
                error=str(e),
            )
            raise StorageUnavailable(f"Failed to load candidates for {source.id}") from e

        items = convert_rows(rows, convert, source.kind.opposite)

        logger.debug(
            "candidates_fetched",
            source_id=str(source.id),
            candidate_kind=source.kind.opposite.value,
            count=len(items),
        )

        return CandidateSet(
            source_id=source.id,
            source_owner_id=source.owner_id,
            kind=source.kind.opposite,
            items=items,
        )

    async def fetch_active_requests(self) -> list[PartRequestItem]:
        """
        Fetch every active request, oldest first, for the sweep.
        """
        query = (
            select(PartRequest)
            .options(selectinload(PartRequest.requester))
            .where(PartRequest.status == RequestStatus.ACTIVE)
            .order_by(PartRequest.created_at, PartRequest.id)
        )

        try:
            rows = (await self.session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("active_requests_fetch_failed", error=str(e))
            raise StorageUnavailable("Failed to load active requests") from e

        return convert_rows(rows, request_from_row, ItemKind.REQUEST)
