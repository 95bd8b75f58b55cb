"""Collaborator protocols consumed by the lifecycle services.

These are Protocols (structural subtyping): the SQLAlchemy store, the Stripe
gateway and the database notification sink satisfy them without inheriting
from anything, and so do the in-memory fakes the tests use.

The domain layer has ZERO imports from SQLAlchemy, Stripe or FastAPI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from engagement_lifecycle.domain.deadlines import TimeWindow
    from engagement_lifecycle.domain.enums import (
        CancellationStatus,
        EngagementStatus,
        NotificationType,
    )
    from engagement_lifecycle.domain.records import (
        CancellationRecord,
        EngagementRecord,
        StatusChange,
    )


@runtime_checkable
class EngagementStore(Protocol):
    """Durable storage for engagements and cancellation requests.

    Every mutating method is conditional and returns whether it matched a
    row. Implementations raise PersistenceError when the store itself fails.
    """

    async def get_engagement(self, engagement_id: uuid.UUID) -> EngagementRecord | None: ...

    async def query_engagements(
        self,
        *,
        status: EngagementStatus,
        delivered_within: TimeWindow,
        warning_unsent: bool = False,
        limit: int = 50,
    ) -> list[EngagementRecord]: ...

    async def transition_engagement(self, change: StatusChange) -> bool:
        """Apply a StatusChange iff the engagement is still in change.expected_status."""
        ...

    async def mark_engagement_warned(self, engagement_id: uuid.UUID, at: datetime) -> bool:
        """Set warning_sent_at iff it is still NULL and the engagement is delivered."""
        ...

    async def record_refund(
        self,
        engagement_id: uuid.UUID,
        refund_ref: str,
        refunded_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Set refund_ref/refunded_at iff refund_ref is still NULL."""
        ...

    async def get_cancellation_request(
        self, cancellation_request_id: uuid.UUID
    ) -> CancellationRecord | None: ...

    async def query_cancellation_requests(
        self,
        *,
        status: CancellationStatus,
        created_within: TimeWindow,
        warning_unsent: bool = False,
        limit: int = 50,
    ) -> list[CancellationRecord]: ...

    async def mark_cancellation_warned(
        self, cancellation_request_id: uuid.UUID, at: datetime
    ) -> bool:
        """Set warning_sent_at iff it is still NULL and the request is pending."""
        ...

    async def close_cancellation_request(
        self, cancellation_request_id: uuid.UUID, at: datetime
    ) -> bool:
        """Reject a still-pending request whose engagement can no longer be cancelled."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Durably records a notification addressed to one party.

    Raises NotificationError on failure; callers treat that as non-fatal.
    """

    async def notify(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        related_engagement_id: uuid.UUID | None = None,
    ) -> None: ...


@dataclass(frozen=True)
class GatewayRefund:
    """What the payment gateway reports for an issued refund.

    Attributes:
        refund_ref: The gateway's refund identifier (e.g. "re_...").
        amount: Refunded amount in the currency's smallest unit.
        status: Gateway-side refund status ("succeeded", "pending", ...).
    """

    refund_ref: str
    amount: int
    status: str


@runtime_checkable
class PaymentGateway(Protocol):
    """Issues refunds against previously captured payments.

    Raises RefundAlreadyProcessedError when the gateway says the payment was
    already refunded, PaymentGatewayError for everything else.
    """

    async def refund(
        self,
        payment_ref: str,
        reason_code: str,
        metadata: dict[str, str],
    ) -> GatewayRefund: ...
