"""SQLAlchemy 2.0 ORM models for the engagement lifecycle.

Five tables:
    1. engagements            - Contracted work between a requester and a contractor.
    2. deliveries             - Work submitted against an engagement.
    3. cancellation_requests  - Pending/resolved requests to end an engagement early.
    4. notifications          - Inbox entries addressed to one party.
    5. engagement_events      - Append-only audit log of every lifecycle write.

Design decisions:
    - UUIDs as primary keys; party ids are opaque strings owned by the account service.
    - Decimal for prices (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for event metadata.
    - CHECK constraints on every status column.
    - Composite indexes on (status, timestamp) for the deadline scanner's range queries.
    - A partial unique index keeps at most one pending delivery per engagement.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. engagements
# ---------------------------------------------------------------------------
class Engagement(Base):
    """One accepted unit of paid creative work."""

    __tablename__ = "engagements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    requester_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Profile id of the client who posted the request",
    )
    contractor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Profile id of the selected creator",
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="contracted",
        comment="Current lifecycle state (guarded by EngagementStateMachine)",
    )

    # --- Financials ---
    final_price: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Agreed price; immutable once set",
    )
    payment_intent_ref: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway reference of the captured payment",
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_ref: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway refund id; presence is the refund idempotency guard",
    )
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Lifecycle timestamps ---
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Anchor of the acceptance deadline",
    )
    warning_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set once when the acceptance warning is claimed",
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # --- Relationships ---
    deliveries: Mapped[list[Delivery]] = relationship(
        "Delivery",
        back_populates="engagement",
        cascade="all, delete-orphan",
        order_by="Delivery.created_at.desc()",
    )
    cancellation_requests: Mapped[list[CancellationRequest]] = relationship(
        "CancellationRequest",
        back_populates="engagement",
        cascade="all, delete-orphan",
        order_by="CancellationRequest.created_at.desc()",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'closed', 'contracted', 'paid', "
            "'delivered', 'completed', 'cancelled')",
            name="ck_engagement_valid_status",
        ),
        CheckConstraint(
            "refund_ref IS NULL OR status = 'cancelled'",
            name="ck_engagement_refund_requires_cancelled",
        ),
        Index("idx_engagement_status_delivered_at", "status", "delivered_at"),
        Index("idx_engagement_requester", "requester_id"),
        Index("idx_engagement_contractor", "contractor_id"),
    )

    def __repr__(self) -> str:
        return f"<Engagement id={self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# 2. deliveries
# ---------------------------------------------------------------------------
class Delivery(Base):
    """A submission of completed work awaiting the requester's review."""

    __tablename__ = "deliveries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("engagements.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    engagement: Mapped[Engagement] = relationship("Engagement", back_populates="deliveries")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_delivery_valid_status",
        ),
        Index(
            "uq_delivery_one_pending",
            "engagement_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_delivery_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Delivery id={self.id} engagement={self.engagement_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. cancellation_requests
# ---------------------------------------------------------------------------
class CancellationRequest(Base):
    """A request by one party to cancel; the other party must respond."""

    __tablename__ = "cancellation_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("engagements.id", ondelete="CASCADE"),
        nullable=False,
    )
    initiator_role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="Anchor of the response deadline",
    )
    warning_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    engagement: Mapped[Engagement] = relationship(
        "Engagement", back_populates="cancellation_requests"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_cancellation_valid_status",
        ),
        CheckConstraint(
            "initiator_role IN ('requester', 'contractor')",
            name="ck_cancellation_valid_initiator",
        ),
        Index("idx_cancellation_status_created_at", "status", "created_at"),
        Index("idx_cancellation_engagement", "engagement_id"),
    )

    def __repr__(self) -> str:
        return f"<CancellationRequest id={self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_engagement_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_notification_recipient", "recipient_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} to={self.recipient_id} type={self.type}>"


# ---------------------------------------------------------------------------
# 5. engagement_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EngagementEvent(Base):
    """Immutable audit record of every lifecycle write.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "engagement_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("engagements.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Profile id of the acting party, or SYSTEM for the scanner",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_engagement", "engagement_id"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<EngagementEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


event.listen(Engagement, "before_update", _set_updated_at)
