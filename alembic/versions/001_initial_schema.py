"""Initial PartsConnect schema.

Profiles, part listings, part requests, matches, the rate limit window
table and the security event log.

Revision ID: 001
Revises:
Create Date: 2026-09-28
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp_column(name: str = "created_at", nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("full_name", sa.Text, nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("trade_type", sa.Text, nullable=False, server_default="general"),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.text("false")),
        _timestamp_column(),
    )

    op.create_table(
        "parts",
        _id_column(),
        sa.Column(
            "supplier_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("part_name", sa.Text, nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("condition", sa.Text, nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("location", sa.Text, nullable=True),
        sa.Column("image_url", sa.Text, nullable=True),
        sa.Column("vehicle_make", sa.Text, nullable=True),
        sa.Column("vehicle_model", sa.Text, nullable=True),
        sa.Column("vehicle_year_from", sa.Integer, nullable=True),
        sa.Column("vehicle_year_to", sa.Integer, nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        _timestamp_column(),
        _timestamp_column("updated_at", nullable=True),
        sa.CheckConstraint("status IN ('available', 'sold')", name="ck_parts_status"),
    )
    op.create_index("ix_parts_status_created", "parts", ["status", "created_at"])
    op.create_index("ix_parts_supplier_id", "parts", ["supplier_id"])

    op.create_table(
        "part_requests",
        _id_column(),
        sa.Column(
            "requester_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("part_name", sa.Text, nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("condition_preference", sa.Text, nullable=True),
        sa.Column("max_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("location", sa.Text, nullable=True),
        sa.Column("image_url", sa.Text, nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        _timestamp_column(),
        _timestamp_column("updated_at", nullable=True),
        sa.CheckConstraint("status IN ('active', 'fulfilled')", name="ck_part_requests_status"),
    )
    op.create_index("ix_part_requests_status_created", "part_requests", ["status", "created_at"])
    op.create_index("ix_part_requests_requester_id", "part_requests", ["requester_id"])

    op.create_table(
        "matches",
        _id_column(),
        sa.Column(
            "part_id",
            UUID(as_uuid=True),
            sa.ForeignKey("parts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "request_id",
            UUID(as_uuid=True),
            sa.ForeignKey("part_requests.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "supplier_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "requester_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("supplier_agreed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("requester_agreed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("match_score", sa.Float, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("origin", sa.String(16), nullable=False, server_default="contact"),
        _timestamp_column(),
        _timestamp_column("updated_at", nullable=True),
        sa.UniqueConstraint("request_id", "part_id", "supplier_id", name="uq_matches_request_part_supplier"),
        sa.CheckConstraint("status IN ('pending', 'both_agreed')", name="ck_matches_status"),
    )
    op.create_index("ix_matches_request_id", "matches", ["request_id"])
    op.create_index("ix_matches_supplier_id", "matches", ["supplier_id"])
    op.create_index("ix_matches_requester_id", "matches", ["requester_id"])

    op.create_table(
        "rate_limits",
        _id_column(),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("function_name", sa.String(128), nullable=False),
        sa.Column("window_start", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("call_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("last_call_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "function_name", name="uq_rate_limits_user_function"),
    )

    op.create_table(
        "security_events",
        _id_column(),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("details", JSONB, nullable=True),
        _timestamp_column(),
        sa.CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_security_events_severity",
        ),
    )
    op.create_index("ix_security_events_user_type", "security_events", ["user_id", "event_type"])
    op.create_index("ix_security_events_created_at", "security_events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_security_events_created_at", table_name="security_events")
    op.drop_index("ix_security_events_user_type", table_name="security_events")
    op.drop_table("security_events")
    op.drop_table("rate_limits")
    op.drop_index("ix_matches_requester_id", table_name="matches")
    op.drop_index("ix_matches_supplier_id", table_name="matches")
    op.drop_index("ix_matches_request_id", table_name="matches")
    op.drop_table("matches")
    op.drop_index("ix_part_requests_requester_id", table_name="part_requests")
    op.drop_index("ix_part_requests_status_created", table_name="part_requests")
    op.drop_table("part_requests")
    op.drop_index("ix_parts_supplier_id", table_name="parts")
    op.drop_index("ix_parts_status_created", table_name="parts")
    op.drop_table("parts")
    op.drop_table("profiles")
