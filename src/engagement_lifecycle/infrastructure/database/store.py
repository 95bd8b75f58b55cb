"""SQLAlchemy implementation of the EngagementStore protocol.

Each public method is one short transaction opened from the session
factory. The lifecycle services never see a session or an ORM instance:
rows leave this module as frozen records.

Any SQLAlchemyError is rolled back and re-raised as PersistenceError so the
services can classify it without importing SQLAlchemy.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from engagement_lifecycle.domain.deadlines import ensure_utc
from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    EventType,
    PartyRole,
)
from engagement_lifecycle.domain.exceptions import PersistenceError
from engagement_lifecycle.domain.records import (
    CancellationRecord,
    DeliveryRecord,
    EngagementRecord,
)
from engagement_lifecycle.infrastructure.database.repositories import (
    CancellationRepository,
    DeliveryRepository,
    EngagementRepository,
    EventRepository,
)
from engagement_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from engagement_lifecycle.domain.deadlines import TimeWindow
    from engagement_lifecycle.domain.records import StatusChange
    from engagement_lifecycle.infrastructure.database.orm_models import (
        CancellationRequest,
        Delivery,
        Engagement,
        EngagementEvent,
    )

logger = get_logger(__name__)


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def to_engagement_record(row: Engagement) -> EngagementRecord:
    return EngagementRecord(
        id=row.id,
        requester_id=row.requester_id,
        contractor_id=row.contractor_id,
        title=row.title,
        status=EngagementStatus(row.status),
        final_price=row.final_price,
        payment_intent_ref=row.payment_intent_ref,
        paid_at=_utc(row.paid_at),
        delivered_at=_utc(row.delivered_at),
        warning_sent_at=_utc(row.warning_sent_at),
        completed_at=_utc(row.completed_at),
        cancelled_at=_utc(row.cancelled_at),
        refund_ref=row.refund_ref,
        refunded_at=_utc(row.refunded_at),
    )


def to_delivery_record(row: Delivery) -> DeliveryRecord:
    return DeliveryRecord(
        id=row.id,
        engagement_id=row.engagement_id,
        status=DeliveryStatus(row.status),
        created_at=ensure_utc(row.created_at),
        feedback=row.feedback,
        resolved_at=_utc(row.resolved_at),
    )


def to_cancellation_record(row: CancellationRequest) -> CancellationRecord:
    return CancellationRecord(
        id=row.id,
        engagement_id=row.engagement_id,
        initiator_role=PartyRole(row.initiator_role),
        status=CancellationStatus(row.status),
        created_at=ensure_utc(row.created_at),
        reason=row.reason,
        warning_sent_at=_utc(row.warning_sent_at),
        resolved_at=_utc(row.resolved_at),
    )


class SqlAlchemyEngagementStore:
    """Engagement store backed by PostgreSQL (or SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("store.operation_failed", operation=operation, error=str(exc))
                raise PersistenceError(f"{operation} failed: {exc}", operation=operation) from exc

    # ------------------------------------------------------------------
    # Engagements
    # ------------------------------------------------------------------

    async def get_engagement(self, engagement_id: uuid.UUID) -> EngagementRecord | None:
        async with self._session("get_engagement") as session:
            row = await EngagementRepository(session).get_by_id(engagement_id)
            return to_engagement_record(row) if row is not None else None

    async def query_engagements(
        self,
        *,
        status: EngagementStatus,
        delivered_within: TimeWindow,
        warning_unsent: bool = False,
        limit: int = 50,
    ) -> list[EngagementRecord]:
        async with self._session("query_engagements") as session:
            rows = await EngagementRepository(session).find_in_delivery_window(
                status, delivered_within, warning_unsent, limit
            )
            return [to_engagement_record(row) for row in rows]

    async def transition_engagement(self, change: StatusChange) -> bool:
        async with self._session("transition_engagement") as session:
            if change.cancellation_request_id is not None:
                resolved = await CancellationRepository(session).resolve_if_pending(
                    change.cancellation_request_id,
                    change.cancellation_resolution or CancellationStatus.APPROVED,
                    change.occurred_at,
                )
                if not resolved:
                    await session.rollback()
                    return False

            moved = await EngagementRepository(session).update_status_if(
                change.engagement_id,
                change.expected_status,
                change.next_status,
                change.fields,
            )
            if not moved:
                await session.rollback()
                return False

            if change.delivery_resolution is not None:
                await DeliveryRepository(session).resolve_pending(
                    change.engagement_id,
                    change.delivery_resolution,
                    change.delivery_feedback,
                    change.occurred_at,
                )

            await EventRepository(session).record(
                engagement_id=change.engagement_id,
                event_type=change.event_type,
                old_status=change.expected_status,
                new_status=change.next_status,
                actor=change.actor,
                metadata=change.metadata or None,
                created_at=change.occurred_at,
            )
            await session.commit()
            return True

    async def mark_engagement_warned(self, engagement_id: uuid.UUID, at: datetime) -> bool:
        async with self._session("mark_engagement_warned") as session:
            claimed = await EngagementRepository(session).mark_warning_sent(engagement_id, at)
            if not claimed:
                await session.rollback()
                return False
            await EventRepository(session).record(
                engagement_id=engagement_id,
                event_type=EventType.ACCEPTANCE_WARNING_SENT,
                old_status=EngagementStatus.DELIVERED,
                new_status=EngagementStatus.DELIVERED,
                created_at=at,
            )
            await session.commit()
            return True

    async def record_refund(
        self,
        engagement_id: uuid.UUID,
        refund_ref: str,
        refunded_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        async with self._session("record_refund") as session:
            recorded = await EngagementRepository(session).record_refund(
                engagement_id, refund_ref, refunded_at
            )
            if not recorded:
                await session.rollback()
                return False
            await EventRepository(session).record(
                engagement_id=engagement_id,
                event_type=EventType.REFUND_ISSUED,
                old_status=EngagementStatus.CANCELLED,
                new_status=EngagementStatus.CANCELLED,
                metadata={"refund_ref": refund_ref, **(metadata or {})},
                created_at=refunded_at,
            )
            await session.commit()
            return True

    # ------------------------------------------------------------------
    # Cancellation requests
    # ------------------------------------------------------------------

    async def get_cancellation_request(
        self, cancellation_request_id: uuid.UUID
    ) -> CancellationRecord | None:
        async with self._session("get_cancellation_request") as session:
            row = await CancellationRepository(session).get_by_id(cancellation_request_id)
            return to_cancellation_record(row) if row is not None else None

    async def query_cancellation_requests(
        self,
        *,
        status: CancellationStatus,
        created_within: TimeWindow,
        warning_unsent: bool = False,
        limit: int = 50,
    ) -> list[CancellationRecord]:
        async with self._session("query_cancellation_requests") as session:
            rows = await CancellationRepository(session).find_in_created_window(
                status, created_within, warning_unsent, limit
            )
            return [to_cancellation_record(row) for row in rows]

    async def mark_cancellation_warned(
        self, cancellation_request_id: uuid.UUID, at: datetime
    ) -> bool:
        async with self._session("mark_cancellation_warned") as session:
            repo = CancellationRepository(session)
            claimed = await repo.mark_warning_sent(cancellation_request_id, at)
            if not claimed:
                await session.rollback()
                return False
            request = await repo.get_by_id(cancellation_request_id)
            engagement = await EngagementRepository(session).get_by_id(request.engagement_id)
            status = EngagementStatus(engagement.status)
            await EventRepository(session).record(
                engagement_id=request.engagement_id,
                event_type=EventType.CANCELLATION_WARNING_SENT,
                old_status=status,
                new_status=status,
                metadata={"cancellation_request_id": str(cancellation_request_id)},
                created_at=at,
            )
            await session.commit()
            return True

    async def close_cancellation_request(
        self, cancellation_request_id: uuid.UUID, at: datetime
    ) -> bool:
        async with self._session("close_cancellation_request") as session:
            resolved = await CancellationRepository(session).resolve_if_pending(
                cancellation_request_id, CancellationStatus.REJECTED, at
            )
            if not resolved:
                await session.rollback()
                return False
            await session.commit()
            return True

    # ------------------------------------------------------------------
    # Read helpers (audit trail, delivery history)
    # ------------------------------------------------------------------

    async def list_events(self, engagement_id: uuid.UUID) -> list[EngagementEvent]:
        async with self._session("list_events") as session:
            return await EventRepository(session).get_by_engagement(engagement_id)

    async def list_deliveries(self, engagement_id: uuid.UUID) -> list[DeliveryRecord]:
        async with self._session("list_deliveries") as session:
            rows = await DeliveryRepository(session).get_by_engagement(engagement_id)
            return [to_delivery_record(row) for row in rows]
