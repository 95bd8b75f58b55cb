"""Domain enumerations for the engagement lifecycle.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

from __future__ import annotations

import enum


class EngagementStatus(enum.StrEnum):
    """Lifecycle states of an engagement.

    Transitions are guarded by EngagementStateMachine.
    See domain/state_machine.py for the transition table.
    """

    OPEN = "open"
    CLOSED = "closed"
    CONTRACTED = "contracted"
    PAID = "paid"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeliveryStatus(enum.StrEnum):
    """Review state of one delivery. Only one may be PENDING per engagement."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CancellationStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PartyRole(enum.StrEnum):
    """The two sides of an engagement."""

    REQUESTER = "requester"
    CONTRACTOR = "contractor"

    @property
    def counterparty(self) -> PartyRole:
        if self is PartyRole.REQUESTER:
            return PartyRole.CONTRACTOR
        return PartyRole.REQUESTER


class TransitionCause(enum.StrEnum):
    """Why the Transition Executor is moving an engagement.

    Each value is also the name of the EngagementStateMachine event it fires.
    """

    # Forced by the deadline scanner
    ACCEPTANCE_DEADLINE_ELAPSED = "acceptance_deadline_elapsed"
    CANCELLATION_RESPONSE_DEADLINE_ELAPSED = "cancellation_response_deadline_elapsed"

    # Human decisions
    DELIVERY_APPROVED = "delivery_approved"
    DELIVERY_REJECTED = "delivery_rejected"
    CANCELLATION_APPROVED = "cancellation_approved"

    @property
    def is_automatic(self) -> bool:
        return self in (
            TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED,
            TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED,
        )

    @property
    def resolves_cancellation(self) -> bool:
        return self in (
            TransitionCause.CANCELLATION_APPROVED,
            TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED,
        )


class EventType(enum.StrEnum):
    """Types of audit events recorded in the engagement_events table.

    Every committed transition, warning claim and refund writes exactly one
    event. The table is append-only.
    """

    # Delivery review
    DELIVERY_APPROVED = "DELIVERY_APPROVED"
    DELIVERY_AUTO_APPROVED = "DELIVERY_AUTO_APPROVED"
    DELIVERY_REJECTED = "DELIVERY_REJECTED"

    # Cancellation
    CANCELLATION_APPROVED = "CANCELLATION_APPROVED"
    CANCELLATION_AUTO_APPROVED = "CANCELLATION_AUTO_APPROVED"

    # Deadline warnings
    ACCEPTANCE_WARNING_SENT = "ACCEPTANCE_WARNING_SENT"
    CANCELLATION_WARNING_SENT = "CANCELLATION_WARNING_SENT"

    # Settlement
    REFUND_ISSUED = "REFUND_ISSUED"


class NotificationType(enum.StrEnum):
    """Notification categories shown in the recipient's inbox."""

    AUTO_APPROVAL_WARNING = "auto_approval_warning"
    COMPLETED = "completed"
    REVIEW = "review"
    CANCELLED = "cancelled"


class RefundErrorKind(enum.StrEnum):
    """Non-exceptional refund failures returned by the Refund Orchestrator."""

    NO_PAYMENT = "no_payment"
    NOT_CANCELLED = "not_cancelled"
    GATEWAY_FAILURE = "gateway_failure"
