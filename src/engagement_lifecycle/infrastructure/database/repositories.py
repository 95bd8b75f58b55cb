"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface to
the store adapter. They accept an AsyncSession and never manage their own
transactions (that's the caller's responsibility).

Every mutating lifecycle method is a conditional UPDATE whose WHERE clause
carries the precondition; the returned bool says whether a row matched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update

from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
)
from engagement_lifecycle.infrastructure.database.orm_models import (
    CancellationRequest,
    Delivery,
    Engagement,
    EngagementEvent,
    Notification,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from engagement_lifecycle.domain.deadlines import TimeWindow
    from engagement_lifecycle.domain.enums import EventType


class EngagementRepository:
    """Data access for engagements."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, engagement: Engagement) -> Engagement:
        """Insert a new engagement."""
        self._session.add(engagement)
        await self._session.flush()
        return engagement

    async def get_by_id(self, engagement_id: uuid.UUID) -> Engagement | None:
        result = await self._session.execute(
            select(Engagement).where(Engagement.id == engagement_id)
        )
        return result.scalar_one_or_none()

    async def find_in_delivery_window(
        self,
        status: EngagementStatus,
        window: TimeWindow,
        warning_unsent: bool,
        limit: int,
    ) -> list[Engagement]:
        """Engagements in `status` whose delivered_at lies in the window, oldest first."""
        stmt = select(Engagement).where(Engagement.status == status.value)
        if window.after is not None:
            stmt = stmt.where(Engagement.delivered_at > window.after)
        if window.until is not None:
            stmt = stmt.where(Engagement.delivered_at <= window.until)
        if warning_unsent:
            stmt = stmt.where(Engagement.warning_sent_at.is_(None))
        stmt = stmt.order_by(Engagement.delivered_at.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_status_if(
        self,
        engagement_id: uuid.UUID,
        expected: EngagementStatus,
        new_status: EngagementStatus,
        fields: dict[str, Any],
    ) -> bool:
        """Compare-and-swap the status. False means another actor got there first."""
        result = await self._session.execute(
            update(Engagement)
            .where(Engagement.id == engagement_id, Engagement.status == expected.value)
            .values(status=new_status.value, **fields)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_warning_sent(self, engagement_id: uuid.UUID, at: datetime) -> bool:
        result = await self._session.execute(
            update(Engagement)
            .where(
                Engagement.id == engagement_id,
                Engagement.status == EngagementStatus.DELIVERED.value,
                Engagement.warning_sent_at.is_(None),
            )
            .values(warning_sent_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_refund(
        self, engagement_id: uuid.UUID, refund_ref: str, refunded_at: datetime
    ) -> bool:
        result = await self._session.execute(
            update(Engagement)
            .where(
                Engagement.id == engagement_id,
                Engagement.status == EngagementStatus.CANCELLED.value,
                Engagement.refund_ref.is_(None),
            )
            .values(refund_ref=refund_ref, refunded_at=refunded_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class DeliveryRepository:
    """Data access for deliveries."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, delivery: Delivery) -> Delivery:
        self._session.add(delivery)
        await self._session.flush()
        return delivery

    async def get_pending(self, engagement_id: uuid.UUID) -> Delivery | None:
        result = await self._session.execute(
            select(Delivery).where(
                Delivery.engagement_id == engagement_id,
                Delivery.status == DeliveryStatus.PENDING.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_engagement(self, engagement_id: uuid.UUID) -> list[Delivery]:
        """Fetch all deliveries for an engagement, newest first."""
        result = await self._session.execute(
            select(Delivery)
            .where(Delivery.engagement_id == engagement_id)
            .order_by(Delivery.created_at.desc())
        )
        return list(result.scalars().all())

    async def resolve_pending(
        self,
        engagement_id: uuid.UUID,
        resolution: DeliveryStatus,
        feedback: str | None,
        at: datetime,
    ) -> bool:
        values: dict[str, Any] = {"status": resolution.value, "resolved_at": at}
        if feedback is not None:
            values["feedback"] = feedback
        result = await self._session.execute(
            update(Delivery)
            .where(
                Delivery.engagement_id == engagement_id,
                Delivery.status == DeliveryStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


class CancellationRepository:
    """Data access for cancellation requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, request: CancellationRequest) -> CancellationRequest:
        self._session.add(request)
        await self._session.flush()
        return request

    async def get_by_id(self, request_id: uuid.UUID) -> CancellationRequest | None:
        result = await self._session.execute(
            select(CancellationRequest).where(CancellationRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def find_in_created_window(
        self,
        status: CancellationStatus,
        window: TimeWindow,
        warning_unsent: bool,
        limit: int,
    ) -> list[CancellationRequest]:
        stmt = select(CancellationRequest).where(CancellationRequest.status == status.value)
        if window.after is not None:
            stmt = stmt.where(CancellationRequest.created_at > window.after)
        if window.until is not None:
            stmt = stmt.where(CancellationRequest.created_at <= window.until)
        if warning_unsent:
            stmt = stmt.where(CancellationRequest.warning_sent_at.is_(None))
        stmt = stmt.order_by(CancellationRequest.created_at.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_warning_sent(self, request_id: uuid.UUID, at: datetime) -> bool:
        result = await self._session.execute(
            update(CancellationRequest)
            .where(
                CancellationRequest.id == request_id,
                CancellationRequest.status == CancellationStatus.PENDING.value,
                CancellationRequest.warning_sent_at.is_(None),
            )
            .values(warning_sent_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def resolve_if_pending(
        self,
        request_id: uuid.UUID,
        resolution: CancellationStatus,
        at: datetime,
    ) -> bool:
        result = await self._session.execute(
            update(CancellationRequest)
            .where(
                CancellationRequest.id == request_id,
                CancellationRequest.status == CancellationStatus.PENDING.value,
            )
            .values(status=resolution.value, resolved_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class NotificationRepository:
    """Data access for the notification inbox."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def get_by_recipient(self, recipient_id: str) -> list[Notification]:
        result = await self._session.execute(
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.asc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        engagement_id: uuid.UUID,
        event_type: EventType,
        old_status: EngagementStatus | None,
        new_status: EngagementStatus,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
        created_at: datetime | None = None,
    ) -> EngagementEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EngagementEvent(
            engagement_id=engagement_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        if created_at is not None:
            evt.created_at = created_at
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_engagement(self, engagement_id: uuid.UUID) -> list[EngagementEvent]:
        """Fetch all events for an engagement in chronological order."""
        result = await self._session.execute(
            select(EngagementEvent)
            .where(EngagementEvent.engagement_id == engagement_id)
            .order_by(EngagementEvent.created_at.asc())
        )
        return list(result.scalars().all())
