"""Engagement State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the scanner or an API caller asks for, an illegal transition
(e.g., PAID -> COMPLETED) raises TransitionNotAllowed.

The machine is instantiated per engagement from its current stored status.
The Transition Executor uses it to decide whether a cause still applies;
the store's conditional write then guards against concurrent actors.

Transition table:
    OPEN        -> CONTRACTED   (applicant_selected)
    OPEN        -> CLOSED       (request_closed)
    CONTRACTED  -> PAID         (payment_captured)
    PAID        -> DELIVERED    (work_delivered)
    DELIVERED   -> COMPLETED    (delivery_approved)
    DELIVERED   -> COMPLETED    (acceptance_deadline_elapsed)
    DELIVERED   -> PAID         (delivery_rejected)
    CONTRACTED  -> CANCELLED    (cancellation_approved, cancellation_response_deadline_elapsed)
    PAID        -> CANCELLED    (cancellation_approved, cancellation_response_deadline_elapsed)
    DELIVERED   -> CANCELLED    (cancellation_approved, cancellation_response_deadline_elapsed)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed


class EngagementStateMachine(StateMachine):
    """State machine that guards engagement lifecycle transitions.

    Usage:
        sm = EngagementStateMachine(current_status="delivered")
        sm.acceptance_deadline_elapsed()  # transitions to completed
        sm.status                         # "completed"
    """

    # --- States ---
    OPEN = State("Open", value="open", initial=True)
    CLOSED = State("Closed", value="closed", final=True)
    CONTRACTED = State("Contracted", value="contracted")
    PAID = State("Paid", value="paid")
    DELIVERED = State("Delivered", value="delivered")
    COMPLETED = State("Completed", value="completed", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---

    # Owned by ordinary application code
    applicant_selected = OPEN.to(CONTRACTED)
    request_closed = OPEN.to(CLOSED)
    payment_captured = CONTRACTED.to(PAID)
    work_delivered = PAID.to(DELIVERED)

    # Delivery review
    delivery_approved = DELIVERED.to(COMPLETED)
    acceptance_deadline_elapsed = DELIVERED.to(COMPLETED)
    delivery_rejected = DELIVERED.to(PAID)

    # Cancellation
    cancellation_approved = (
        CONTRACTED.to(CANCELLED) | PAID.to(CANCELLED) | DELIVERED.to(CANCELLED)
    )
    cancellation_response_deadline_elapsed = (
        CONTRACTED.to(CANCELLED) | PAID.to(CANCELLED) | DELIVERED.to(CANCELLED)
    )

    def __init__(self, current_status: str = "open") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EngagementStatus value (e.g., "delivered").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EngagementStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Fire `event_name` on a throwaway machine and return the resulting status.

    Raises:
        TransitionNotAllowed: If the transition is illegal from current_status.
        ValueError: If the status or event name is unknown.
    """
    sm = EngagementStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


def resolve_target(current_status: str, event_name: str) -> str | None:
    """Return the status `event_name` would lead to, or None if it cannot fire."""
    try:
        return validate_transition(current_status, event_name)
    except TransitionNotAllowed:
        return None
