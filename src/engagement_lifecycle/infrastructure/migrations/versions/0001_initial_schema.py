"""Initial schema: engagements, deliveries, cancellation requests, notifications, events.

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Apply migration: create the lifecycle tables."""
    op.create_table(
        "engagements",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("requester_id", sa.String(64), nullable=False),
        sa.Column("contractor_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="contracted"),
        sa.Column("final_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_intent_ref", sa.String(255), nullable=True),
        _timestamp("paid_at"),
        sa.Column("refund_ref", sa.String(255), nullable=True),
        _timestamp("refunded_at"),
        _timestamp("delivered_at"),
        _timestamp("warning_sent_at"),
        _timestamp("completed_at"),
        _timestamp("cancelled_at"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('open', 'closed', 'contracted', 'paid', "
            "'delivered', 'completed', 'cancelled')",
            name="ck_engagement_valid_status",
        ),
        sa.CheckConstraint(
            "refund_ref IS NULL OR status = 'cancelled'",
            name="ck_engagement_refund_requires_cancelled",
        ),
    )
    op.create_index(
        "idx_engagement_status_delivered_at", "engagements", ["status", "delivered_at"]
    )
    op.create_index("idx_engagement_requester", "engagements", ["requester_id"])
    op.create_index("idx_engagement_contractor", "engagements", ["contractor_id"])

    op.create_table(
        "deliveries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engagement_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        _timestamp("resolved_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_delivery_valid_status",
        ),
    )
    # At most one pending delivery per engagement
    op.create_index(
        "uq_delivery_one_pending",
        "deliveries",
        ["engagement_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index("idx_delivery_created_at", "deliveries", ["created_at"])

    op.create_table(
        "cancellation_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engagement_id", sa.Uuid(), nullable=False),
        sa.Column("initiator_role", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        _timestamp("warning_sent_at"),
        _timestamp("resolved_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_cancellation_valid_status",
        ),
        sa.CheckConstraint(
            "initiator_role IN ('requester', 'contractor')",
            name="ck_cancellation_valid_initiator",
        ),
    )
    op.create_index(
        "idx_cancellation_status_created_at",
        "cancellation_requests",
        ["status", "created_at"],
    )
    op.create_index("idx_cancellation_engagement", "cancellation_requests", ["engagement_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_engagement_id", sa.Uuid(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_notification_recipient", "notifications", ["recipient_id", "is_read"])

    op.create_table(
        "engagement_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engagement_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=False),
        sa.Column("actor", sa.String(64), nullable=False, server_default="SYSTEM"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_event_engagement", "engagement_events", ["engagement_id"])
    op.create_index("idx_event_type", "engagement_events", ["event_type"])


def downgrade() -> None:
    """Revert migration: drop the lifecycle tables."""
    op.drop_table("engagement_events")
    op.drop_table("notifications")
    op.drop_table("cancellation_requests")
    op.drop_table("deliveries")
    op.drop_table("engagements")
