"""Tests for the SQLAlchemy engagement store and notification sink.

Runs against an in-memory SQLite database (aiosqlite) built from the ORM
metadata. Every conditional write is checked for both its winning and its
losing branch.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from conftest import CONTRACTOR_ID, REQUESTER_ID, T0
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from engagement_lifecycle.domain.deadlines import TimeWindow
from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    EventType,
    NotificationType,
    PartyRole,
)
from engagement_lifecycle.domain.exceptions import NotificationError, PersistenceError
from engagement_lifecycle.domain.records import StatusChange
from engagement_lifecycle.infrastructure.database.engine import create_session_factory
from engagement_lifecycle.infrastructure.database.orm_models import (
    Base,
    CancellationRequest,
    Delivery,
    Engagement,
)
from engagement_lifecycle.infrastructure.database.repositories import NotificationRepository
from engagement_lifecycle.infrastructure.database.store import SqlAlchemyEngagementStore
from engagement_lifecycle.infrastructure.notifications import DatabaseNotificationSink


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):  # noqa: ANN001, ANN201
    return create_session_factory(engine)


@pytest.fixture
def sql_store(session_factory) -> SqlAlchemyEngagementStore:  # noqa: ANN001
    return SqlAlchemyEngagementStore(session_factory)


async def seed_engagement(session_factory, **overrides) -> uuid.UUID:  # noqa: ANN001, ANN003
    values = {
        "requester_id": REQUESTER_ID,
        "contractor_id": CONTRACTOR_ID,
        "title": "Album cover",
        "status": EngagementStatus.DELIVERED.value,
        "final_price": Decimal("200.00"),
        "payment_intent_ref": "pi_test_store",
        "paid_at": T0 - timedelta(days=2),
        "delivered_at": T0,
    }
    values.update(overrides)
    async with session_factory() as session:
        engagement = Engagement(**values)
        session.add(engagement)
        await session.flush()
        if engagement.status == EngagementStatus.DELIVERED.value:
            session.add(
                Delivery(
                    engagement_id=engagement.id,
                    status=DeliveryStatus.PENDING.value,
                    created_at=values["delivered_at"],
                )
            )
        await session.commit()
        return engagement.id


async def seed_cancellation(session_factory, engagement_id, **overrides) -> uuid.UUID:  # noqa: ANN001, ANN003
    values = {
        "engagement_id": engagement_id,
        "initiator_role": PartyRole.REQUESTER.value,
        "status": CancellationStatus.PENDING.value,
        "reason": "Budget cut",
        "created_at": T0,
    }
    values.update(overrides)
    async with session_factory() as session:
        request = CancellationRequest(**values)
        session.add(request)
        await session.commit()
        return request.id


def completion(engagement_id: uuid.UUID, at=T0 + timedelta(days=14)) -> StatusChange:  # noqa: ANN001
    return StatusChange(
        engagement_id=engagement_id,
        expected_status=EngagementStatus.DELIVERED,
        next_status=EngagementStatus.COMPLETED,
        event_type=EventType.DELIVERY_AUTO_APPROVED,
        occurred_at=at,
        fields={"completed_at": at},
        delivery_resolution=DeliveryStatus.APPROVED,
        delivery_feedback="Automatically approved",
        metadata={"delivered_at": T0.isoformat()},
    )


class TestReads:
    @pytest.mark.asyncio
    async def test_get_engagement_returns_utc_record(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(session_factory)

        record = await sql_store.get_engagement(engagement_id)

        assert record.id == engagement_id
        assert record.status is EngagementStatus.DELIVERED
        assert record.final_price == Decimal("200.00")
        assert record.delivered_at == T0
        assert record.delivered_at.tzinfo is not None
        assert record.delivered_at.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_get_missing_engagement(self, sql_store) -> None:
        assert await sql_store.get_engagement(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_query_window_bounds(self, session_factory, sql_store) -> None:
        at_lower = await seed_engagement(session_factory, delivered_at=T0 - timedelta(hours=24))
        inside = await seed_engagement(session_factory, delivered_at=T0 - timedelta(hours=3))
        at_upper = await seed_engagement(session_factory, delivered_at=T0)
        await seed_engagement(session_factory, delivered_at=T0 + timedelta(seconds=1))

        rows = await sql_store.query_engagements(
            status=EngagementStatus.DELIVERED,
            delivered_within=TimeWindow(after=T0 - timedelta(hours=24), until=T0),
        )

        ids = [row.id for row in rows]
        assert at_lower not in ids
        assert ids == [inside, at_upper]

    @pytest.mark.asyncio
    async def test_query_filters_status_warning_and_limit(self, session_factory, sql_store) -> None:
        oldest = await seed_engagement(session_factory, delivered_at=T0 - timedelta(days=3))
        await seed_engagement(session_factory, delivered_at=T0 - timedelta(days=2))
        await seed_engagement(
            session_factory, delivered_at=T0 - timedelta(days=4), warning_sent_at=T0
        )
        await seed_engagement(
            session_factory,
            status=EngagementStatus.COMPLETED.value,
            delivered_at=T0 - timedelta(days=5),
        )

        rows = await sql_store.query_engagements(
            status=EngagementStatus.DELIVERED,
            delivered_within=TimeWindow(until=T0),
            warning_unsent=True,
            limit=1,
        )

        assert [row.id for row in rows] == [oldest]

    @pytest.mark.asyncio
    async def test_query_cancellation_requests(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.PAID.value, delivered_at=None
        )
        pending = await seed_cancellation(session_factory, engagement_id)
        await seed_cancellation(
            session_factory, engagement_id, status=CancellationStatus.REJECTED.value
        )

        rows = await sql_store.query_cancellation_requests(
            status=CancellationStatus.PENDING,
            created_within=TimeWindow(until=T0 + timedelta(days=7)),
        )

        assert [row.id for row in rows] == [pending]
        assert rows[0].responder_role is PartyRole.CONTRACTOR
        assert rows[0].created_at == T0


class TestTransition:
    @pytest.mark.asyncio
    async def test_compare_and_swap(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(session_factory)

        assert await sql_store.transition_engagement(completion(engagement_id)) is True
        assert await sql_store.transition_engagement(completion(engagement_id)) is False

        record = await sql_store.get_engagement(engagement_id)
        assert record.status is EngagementStatus.COMPLETED
        assert record.completed_at == T0 + timedelta(days=14)

    @pytest.mark.asyncio
    async def test_resolves_pending_delivery_and_records_event(
        self, session_factory, sql_store
    ) -> None:
        engagement_id = await seed_engagement(session_factory)

        await sql_store.transition_engagement(completion(engagement_id))

        (delivery,) = await sql_store.list_deliveries(engagement_id)
        assert delivery.status is DeliveryStatus.APPROVED
        assert delivery.feedback == "Automatically approved"

        (event,) = await sql_store.list_events(engagement_id)
        assert event.event_type == EventType.DELIVERY_AUTO_APPROVED.value
        assert event.old_status == "delivered"
        assert event.new_status == "completed"
        assert event.actor == "SYSTEM"
        assert event.metadata_json == {"delivered_at": T0.isoformat()}

    @pytest.mark.asyncio
    async def test_losing_write_leaves_no_trace(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.CANCELLED.value, delivered_at=None
        )

        assert await sql_store.transition_engagement(completion(engagement_id)) is False
        assert await sql_store.list_events(engagement_id) == []

    @pytest.mark.asyncio
    async def test_cancellation_resolved_in_same_write(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.PAID.value, delivered_at=None
        )
        request_id = await seed_cancellation(session_factory, engagement_id)
        at = T0 + timedelta(days=7)
        change = StatusChange(
            engagement_id=engagement_id,
            expected_status=EngagementStatus.PAID,
            next_status=EngagementStatus.CANCELLED,
            event_type=EventType.CANCELLATION_AUTO_APPROVED,
            occurred_at=at,
            fields={"cancelled_at": at},
            cancellation_request_id=request_id,
        )

        assert await sql_store.transition_engagement(change) is True

        request = await sql_store.get_cancellation_request(request_id)
        assert request.status is CancellationStatus.APPROVED
        assert request.resolved_at == at
        record = await sql_store.get_engagement(engagement_id)
        assert record.status is EngagementStatus.CANCELLED
        assert record.cancelled_at == at

    @pytest.mark.asyncio
    async def test_resolved_request_blocks_transition(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.PAID.value, delivered_at=None
        )
        request_id = await seed_cancellation(
            session_factory, engagement_id, status=CancellationStatus.REJECTED.value
        )
        change = StatusChange(
            engagement_id=engagement_id,
            expected_status=EngagementStatus.PAID,
            next_status=EngagementStatus.CANCELLED,
            event_type=EventType.CANCELLATION_AUTO_APPROVED,
            occurred_at=T0,
            cancellation_request_id=request_id,
        )

        assert await sql_store.transition_engagement(change) is False

        record = await sql_store.get_engagement(engagement_id)
        assert record.status is EngagementStatus.PAID
        request = await sql_store.get_cancellation_request(request_id)
        assert request.status is CancellationStatus.REJECTED


class TestWarningClaims:
    @pytest.mark.asyncio
    async def test_engagement_warning_claimed_once(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(session_factory)
        at = T0 + timedelta(days=11)

        assert await sql_store.mark_engagement_warned(engagement_id, at) is True
        assert await sql_store.mark_engagement_warned(engagement_id, at) is False

        record = await sql_store.get_engagement(engagement_id)
        assert record.warning_sent_at == at
        (event,) = await sql_store.list_events(engagement_id)
        assert event.event_type == EventType.ACCEPTANCE_WARNING_SENT.value

    @pytest.mark.asyncio
    async def test_engagement_warning_requires_delivered(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.COMPLETED.value
        )

        assert await sql_store.mark_engagement_warned(engagement_id, T0) is False

    @pytest.mark.asyncio
    async def test_cancellation_warning_claimed_once(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.PAID.value, delivered_at=None
        )
        request_id = await seed_cancellation(session_factory, engagement_id)
        at = T0 + timedelta(days=4)

        assert await sql_store.mark_cancellation_warned(request_id, at) is True
        assert await sql_store.mark_cancellation_warned(request_id, at) is False

        request = await sql_store.get_cancellation_request(request_id)
        assert request.warning_sent_at == at
        (event,) = await sql_store.list_events(engagement_id)
        assert event.event_type == EventType.CANCELLATION_WARNING_SENT.value
        assert event.metadata_json == {"cancellation_request_id": str(request_id)}


class TestCloseCancellationRequest:
    @pytest.mark.asyncio
    async def test_closes_pending_request_once(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.COMPLETED.value
        )
        request_id = await seed_cancellation(session_factory, engagement_id)
        at = T0 + timedelta(days=8)

        assert await sql_store.close_cancellation_request(request_id, at) is True
        assert await sql_store.close_cancellation_request(request_id, at) is False

        request = await sql_store.get_cancellation_request(request_id)
        assert request.status is CancellationStatus.REJECTED
        record = await sql_store.get_engagement(engagement_id)
        assert record.status is EngagementStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_leaves_resolved_request_alone(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.CANCELLED.value, delivered_at=None
        )
        request_id = await seed_cancellation(
            session_factory, engagement_id, status=CancellationStatus.APPROVED.value
        )

        assert await sql_store.close_cancellation_request(request_id, T0) is False

        request = await sql_store.get_cancellation_request(request_id)
        assert request.status is CancellationStatus.APPROVED


class TestRecordRefund:
    @pytest.mark.asyncio
    async def test_recorded_once(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.CANCELLED.value, delivered_at=None
        )

        assert await sql_store.record_refund(engagement_id, "re_1", T0, {"reason": "x"}) is True
        assert await sql_store.record_refund(engagement_id, "re_2", T0) is False

        record = await sql_store.get_engagement(engagement_id)
        assert record.refund_ref == "re_1"
        assert record.refunded_at == T0
        (event,) = await sql_store.list_events(engagement_id)
        assert event.event_type == EventType.REFUND_ISSUED.value
        assert event.metadata_json == {"refund_ref": "re_1", "reason": "x"}

    @pytest.mark.asyncio
    async def test_requires_cancelled(self, session_factory, sql_store) -> None:
        engagement_id = await seed_engagement(
            session_factory, status=EngagementStatus.PAID.value, delivered_at=None
        )

        assert await sql_store.record_refund(engagement_id, "re_1", T0) is False


class TestFailures:
    @pytest.mark.asyncio
    async def test_database_errors_become_persistence_errors(self, engine, sql_store) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        with pytest.raises(PersistenceError) as exc_info:
            await sql_store.get_engagement(uuid.uuid4())
        assert exc_info.value.operation == "get_engagement"

    @pytest.mark.asyncio
    async def test_notification_outage_raises_notification_error(
        self, engine, session_factory
    ) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        sink = DatabaseNotificationSink(session_factory)

        with pytest.raises(NotificationError):
            await sink.notify(REQUESTER_ID, NotificationType.COMPLETED, "t", "m")


class TestNotificationSink:
    @pytest.mark.asyncio
    async def test_writes_unread_inbox_entry(self, session_factory) -> None:
        sink = DatabaseNotificationSink(session_factory)
        engagement_id = uuid.uuid4()

        await sink.notify(
            CONTRACTOR_ID,
            NotificationType.AUTO_APPROVAL_WARNING,
            "Review deadline approaching",
            "Approved automatically in 3 days",
            related_engagement_id=engagement_id,
        )

        async with session_factory() as session:
            (row,) = await NotificationRepository(session).get_by_recipient(CONTRACTOR_ID)
        assert row.type == NotificationType.AUTO_APPROVAL_WARNING.value
        assert row.related_engagement_id == engagement_id
        assert row.is_read is False
