"""Domain exceptions for the engagement lifecycle.

These exceptions are framework-agnostic and represent business rule
violations or collaborator failures. The API layer's middleware translates
them into HTTP responses; the deadline scanner records them per item.

A transition whose precondition no longer holds is NOT an exception: it is
returned as a no-op TransitionOutcome.
"""


class LifecycleError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "LIFECYCLE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class EngagementNotFoundError(LifecycleError):
    """Raised when an engagement ID does not exist (or vanished mid-cycle)."""

    def __init__(self, engagement_id: str) -> None:
        super().__init__(
            message=f"Engagement not found: {engagement_id}",
            code="ENGAGEMENT_NOT_FOUND",
        )
        self.engagement_id = engagement_id


class CancellationRequestNotFoundError(LifecycleError):
    """Raised when a cancellation request ID does not exist."""

    def __init__(self, cancellation_request_id: str) -> None:
        super().__init__(
            message=f"Cancellation request not found: {cancellation_request_id}",
            code="CANCELLATION_REQUEST_NOT_FOUND",
        )
        self.cancellation_request_id = cancellation_request_id


# --- State Machine Errors ---


class InvalidStateTransitionError(LifecycleError):
    """Raised when a caller asks for a transition the executor does not support.

    Example: asking for DELIVERED -> COMPLETED with a cancellation cause.
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


# --- Collaborator Errors ---


class PersistenceError(LifecycleError):
    """Raised when a store read or write fails. Retryable at the next cycle."""

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(message=message, code="PERSISTENCE_FAILURE")
        self.operation = operation


class NotificationError(LifecycleError):
    """Raised by a notification sink. Never rolls back a committed transition."""

    def __init__(self, message: str, recipient_id: str = "") -> None:
        super().__init__(message=message, code="NOTIFICATION_FAILURE")
        self.recipient_id = recipient_id


class PaymentGatewayError(LifecycleError):
    """Raised when the payment gateway rejects or fails a refund call."""

    def __init__(self, message: str, gateway_code: str | None = None) -> None:
        super().__init__(message=message, code="GATEWAY_FAILURE")
        self.gateway_code = gateway_code


class RefundAlreadyProcessedError(PaymentGatewayError):
    """The gateway reports the payment as already refunded on its side."""

    def __init__(self, message: str, gateway_code: str | None = None) -> None:
        super().__init__(message=message, gateway_code=gateway_code)
        self.code = "ALREADY_REFUNDED_UPSTREAM"


# --- Idempotency Errors ---


class DuplicateOperationError(LifecycleError):
    """Raised when an operation is already running under the same key."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
