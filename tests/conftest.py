"""Shared test fixtures for the engagement lifecycle test suite.

Provides:
    - In-memory fakes for the store, notification sink and payment gateway
    - Factory functions for engagement and cancellation records
    - A fixed clock (T0) and the default deadline policy
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest

from engagement_lifecycle.domain.deadlines import DeadlinePolicy
from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    NotificationType,
    PartyRole,
)
from engagement_lifecycle.domain.exceptions import (
    NotificationError,
    PaymentGatewayError,
    PersistenceError,
)
from engagement_lifecycle.domain.ports import GatewayRefund
from engagement_lifecycle.domain.records import (
    CancellationRecord,
    DeliveryRecord,
    EngagementRecord,
    StatusChange,
)
from engagement_lifecycle.services.deadline_scanner import DeadlineScanner
from engagement_lifecycle.services.refund_orchestrator import RefundOrchestrator
from engagement_lifecycle.services.transition_executor import TransitionExecutor

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

REQUESTER_ID = "requester-1"
CONTRACTOR_ID = "contractor-1"


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_engagement(**overrides: Any) -> EngagementRecord:
    """Return a DELIVERED engagement with a captured payment, delivered at T0."""
    data: dict[str, Any] = {
        "id": uuid.uuid4(),
        "requester_id": REQUESTER_ID,
        "contractor_id": CONTRACTOR_ID,
        "title": "Poster illustration",
        "status": EngagementStatus.DELIVERED,
        "final_price": Decimal("150.00"),
        "payment_intent_ref": "pi_test_123",
        "paid_at": T0 - timedelta(days=3),
        "delivered_at": T0,
    }
    data.update(overrides)
    return EngagementRecord(**data)


def make_cancellation(engagement: EngagementRecord, **overrides: Any) -> CancellationRecord:
    """Return a pending cancellation requested by the requester at T0."""
    data: dict[str, Any] = {
        "id": uuid.uuid4(),
        "engagement_id": engagement.id,
        "initiator_role": PartyRole.REQUESTER,
        "status": CancellationStatus.PENDING,
        "created_at": T0,
        "reason": "Plans changed",
    }
    data.update(overrides)
    return CancellationRecord(**data)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class InMemoryEngagementStore:
    """Dict-backed EngagementStore with the same conditional-write semantics
    as the SQLAlchemy store. Methods named in `failing` raise PersistenceError."""

    def __init__(self) -> None:
        self.engagements: dict[uuid.UUID, EngagementRecord] = {}
        self.cancellations: dict[uuid.UUID, CancellationRecord] = {}
        self.deliveries: dict[uuid.UUID, list[DeliveryRecord]] = {}
        self.events: list[dict[str, Any]] = []
        self.failing: set[str] = set()
        self.calls: list[str] = []

    # --- seeding ---

    def add(self, engagement: EngagementRecord, with_pending_delivery: bool = True) -> EngagementRecord:
        self.engagements[engagement.id] = engagement
        if engagement.status is EngagementStatus.DELIVERED and with_pending_delivery:
            self.deliveries.setdefault(engagement.id, []).append(
                DeliveryRecord(
                    id=uuid.uuid4(),
                    engagement_id=engagement.id,
                    status=DeliveryStatus.PENDING,
                    created_at=engagement.delivered_at or T0,
                )
            )
        return engagement

    def add_cancellation(self, request: CancellationRecord) -> CancellationRecord:
        self.cancellations[request.id] = request
        return request

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise PersistenceError(f"{operation} failed: simulated outage", operation=operation)

    # --- EngagementStore ---

    async def get_engagement(self, engagement_id):  # noqa: ANN001
        self._enter("get_engagement")
        return self.engagements.get(engagement_id)

    async def query_engagements(self, *, status, delivered_within, warning_unsent=False, limit=50):  # noqa: ANN001
        self._enter("query_engagements")
        rows = [
            e
            for e in self.engagements.values()
            if e.status is status
            and e.delivered_at is not None
            and delivered_within.contains(e.delivered_at)
            and (not warning_unsent or e.warning_sent_at is None)
        ]
        rows.sort(key=lambda e: e.delivered_at)
        return rows[:limit]

    async def transition_engagement(self, change: StatusChange) -> bool:
        self._enter("transition_engagement")
        if change.cancellation_request_id is not None:
            request = self.cancellations.get(change.cancellation_request_id)
            if request is None or request.status is not CancellationStatus.PENDING:
                return False
        current = self.engagements.get(change.engagement_id)
        if current is None or current.status is not change.expected_status:
            return False

        self.engagements[current.id] = replace(current, status=change.next_status, **change.fields)
        if change.cancellation_request_id is not None:
            self.cancellations[change.cancellation_request_id] = replace(
                self.cancellations[change.cancellation_request_id],
                status=change.cancellation_resolution or CancellationStatus.APPROVED,
                resolved_at=change.occurred_at,
            )
        if change.delivery_resolution is not None:
            self.deliveries[current.id] = [
                replace(
                    d,
                    status=change.delivery_resolution,
                    feedback=change.delivery_feedback or d.feedback,
                    resolved_at=change.occurred_at,
                )
                if d.status is DeliveryStatus.PENDING
                else d
                for d in self.deliveries.get(current.id, [])
            ]
        self.events.append(
            {
                "engagement_id": current.id,
                "event_type": change.event_type,
                "old_status": change.expected_status,
                "new_status": change.next_status,
                "actor": change.actor,
                "metadata": change.metadata,
            }
        )
        return True

    async def mark_engagement_warned(self, engagement_id, at) -> bool:  # noqa: ANN001
        self._enter("mark_engagement_warned")
        current = self.engagements.get(engagement_id)
        if (
            current is None
            or current.status is not EngagementStatus.DELIVERED
            or current.warning_sent_at is not None
        ):
            return False
        self.engagements[engagement_id] = replace(current, warning_sent_at=at)
        return True

    async def record_refund(self, engagement_id, refund_ref, refunded_at, metadata=None) -> bool:  # noqa: ANN001
        self._enter("record_refund")
        current = self.engagements.get(engagement_id)
        if (
            current is None
            or current.status is not EngagementStatus.CANCELLED
            or current.refund_ref is not None
        ):
            return False
        self.engagements[engagement_id] = replace(
            current, refund_ref=refund_ref, refunded_at=refunded_at
        )
        return True

    async def get_cancellation_request(self, cancellation_request_id):  # noqa: ANN001
        self._enter("get_cancellation_request")
        return self.cancellations.get(cancellation_request_id)

    async def query_cancellation_requests(self, *, status, created_within, warning_unsent=False, limit=50):  # noqa: ANN001
        self._enter("query_cancellation_requests")
        rows = [
            r
            for r in self.cancellations.values()
            if r.status is status
            and created_within.contains(r.created_at)
            and (not warning_unsent or r.warning_sent_at is None)
        ]
        rows.sort(key=lambda r: r.created_at)
        return rows[:limit]

    async def mark_cancellation_warned(self, cancellation_request_id, at) -> bool:  # noqa: ANN001
        self._enter("mark_cancellation_warned")
        current = self.cancellations.get(cancellation_request_id)
        if (
            current is None
            or current.status is not CancellationStatus.PENDING
            or current.warning_sent_at is not None
        ):
            return False
        self.cancellations[cancellation_request_id] = replace(current, warning_sent_at=at)
        return True

    async def close_cancellation_request(self, cancellation_request_id, at) -> bool:  # noqa: ANN001
        self._enter("close_cancellation_request")
        current = self.cancellations.get(cancellation_request_id)
        if current is None or current.status is not CancellationStatus.PENDING:
            return False
        self.cancellations[cancellation_request_id] = replace(
            current, status=CancellationStatus.REJECTED, resolved_at=at
        )
        return True


class RecordingNotificationSink:
    """Keeps every notification; recipients in `failing_for` raise NotificationError."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failing_for: set[str] = set()

    async def notify(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        related_engagement_id: uuid.UUID | None = None,
    ) -> None:
        if recipient_id in self.failing_for:
            raise NotificationError("inbox unavailable", recipient_id=recipient_id)
        self.sent.append(
            {
                "recipient_id": recipient_id,
                "type": notification_type,
                "title": title,
                "message": message,
                "engagement_id": related_engagement_id,
            }
        )

    def to(self, recipient_id: str) -> list[dict[str, Any]]:
        return [n for n in self.sent if n["recipient_id"] == recipient_id]


class FakePaymentGateway:
    """Counts refund calls; raises `error` instead when it is set."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error: PaymentGatewayError | None = None

    async def refund(self, payment_ref: str, reason_code: str, metadata: dict[str, str]) -> GatewayRefund:
        self.calls.append({"payment_ref": payment_ref, "reason_code": reason_code, "metadata": metadata})
        if self.error is not None:
            raise self.error
        return GatewayRefund(refund_ref=f"re_test_{len(self.calls)}", amount=15000, status="succeeded")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def policy() -> DeadlinePolicy:
    return DeadlinePolicy()


@pytest.fixture
def store() -> InMemoryEngagementStore:
    return InMemoryEngagementStore()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def executor(store, notifier, policy) -> TransitionExecutor:  # noqa: ANN001
    return TransitionExecutor(store, notifier, policy, clock=lambda: T0)


@pytest.fixture
def orchestrator(store, gateway) -> RefundOrchestrator:  # noqa: ANN001
    return RefundOrchestrator(store, gateway, clock=lambda: T0)


@pytest.fixture
def scanner(store, notifier, executor, orchestrator, policy) -> DeadlineScanner:  # noqa: ANN001
    return DeadlineScanner(store, notifier, executor, refunds=orchestrator, policy=policy)
