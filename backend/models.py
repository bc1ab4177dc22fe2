"""
PartsConnect Database Models
SQLAlchemy ORM models for the spare-parts marketplace.
"""
import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class PartCategory(str, enum.Enum):
    """Fixed marketplace categories."""

    PHONE = "Phone Spare Parts"
    TV = "TV Spare Parts"
    COMPUTER = "Computer Spare Parts"
    CAR = "Car Spare Parts"


class ListingStatus(str, enum.Enum):
    AVAILABLE = "available"
    SOLD = "sold"


class RequestStatus(str, enum.Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"


class MatchStatus(str, enum.Enum):
    PENDING = "pending"
    BOTH_AGREED = "both_agreed"


class MatchOrigin(str, enum.Enum):
    """How a match came to exist."""

    CONTACT = "contact"  # A user pressed "contact" on an item
    AUTO = "auto"  # Created by the auto-match sweep


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Profile(Base):
    """
    Marketplace member profile.

    Identity is owned by the external auth provider; this table mirrors
    the fields the matching engine and notifications need.
    """

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        doc="Profile id (same as the auth user id)",
    )
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    trade_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="general",
        doc="Trade the member works in, shown to the ranking model as a reputation signal",
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    parts: Mapped[list["Part"]] = relationship(back_populates="supplier")
    part_requests: Mapped[list["PartRequest"]] = relationship(back_populates="requester")


class Part(Base):
    """
    A supplier-owned listing of a part for sale.
    """

    __tablename__ = "parts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    part_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[PartCategory] = mapped_column(
        Enum(PartCategory, native_enum=False, values_callable=_enum_values, length=64),
        nullable=False,
    )
    condition: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_make: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_year_from: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    vehicle_year_to: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=ListingStatus.AVAILABLE,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    supplier: Mapped[Profile] = relationship(back_populates="parts")

    __table_args__ = (
        Index("ix_parts_status_created", "status", "created_at"),
        Index("ix_parts_supplier_id", "supplier_id"),
    )


class PartRequest(Base):
    """
    A requester-owned statement of a part being sought.
    """

    __tablename__ = "part_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    part_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[PartCategory] = mapped_column(
        Enum(PartCategory, native_enum=False, values_callable=_enum_values, length=64),
        nullable=False,
    )
    condition_preference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=RequestStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    requester: Mapped[Profile] = relationship(back_populates="part_requests")

    __table_args__ = (
        Index("ix_part_requests_status_created", "status", "created_at"),
        Index("ix_part_requests_requester_id", "requester_id"),
    )


class Match(Base):
    """
    Proposed pairing between a supplier and a requester.

    At most one match exists per (request, part, supplier) triple.
    Status moves pending -> both_agreed and never back.
    """

    __tablename__ = "matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    part_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("parts.id", ondelete="SET NULL"),
        nullable=True,
    )
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("part_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=MatchStatus.PENDING,
    )
    supplier_agreed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requester_agreed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    match_score: Mapped[Optional[float]] = mapped_column(
        nullable=True,
        doc="Ranking score (0-100) for sweep-created matches",
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    origin: Mapped[MatchOrigin] = mapped_column(
        Enum(MatchOrigin, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=MatchOrigin.CONTACT,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("request_id", "part_id", "supplier_id", name="uq_matches_request_part_supplier"),
        Index("ix_matches_request_id", "request_id"),
    )


class RateLimitWindow(Base):
    """
    One active call-count window per (user, function).
    """

    __tablename__ = "rate_limits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    function_name: Mapped[str] = mapped_column(String(128), nullable=False)
    window_start: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    call_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_call_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "function_name", name="uq_rate_limits_user_function"),
    )


class SecurityEvent(Base):
    """
    Security-relevant events (rate limit violations, privileged triggers).
    """

    __tablename__ = "security_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    event_category: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_security_events_user_type", "user_id", "event_type"),
    )
