"""Domain layer: pure business logic with zero framework dependencies."""

from engagement_lifecycle.domain.deadlines import DeadlinePolicy, TimeWindow
from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    EventType,
    NotificationType,
    PartyRole,
    RefundErrorKind,
    TransitionCause,
)
from engagement_lifecycle.domain.exceptions import (
    EngagementNotFoundError,
    LifecycleError,
    PaymentGatewayError,
    PersistenceError,
)
from engagement_lifecycle.domain.ports import (
    EngagementStore,
    GatewayRefund,
    NotificationSink,
    PaymentGateway,
)
from engagement_lifecycle.domain.records import (
    CancellationRecord,
    EngagementRecord,
    StatusChange,
)
from engagement_lifecycle.domain.state_machine import (
    EngagementStateMachine,
    validate_transition,
)

__all__ = [
    "CancellationRecord",
    "CancellationStatus",
    "DeadlinePolicy",
    "DeliveryStatus",
    "EngagementNotFoundError",
    "EngagementRecord",
    "EngagementStateMachine",
    "EngagementStatus",
    "EngagementStore",
    "EventType",
    "GatewayRefund",
    "LifecycleError",
    "NotificationSink",
    "NotificationType",
    "PartyRole",
    "PaymentGateway",
    "PaymentGatewayError",
    "PersistenceError",
    "RefundErrorKind",
    "StatusChange",
    "TimeWindow",
    "TransitionCause",
    "validate_transition",
]
