"""Transition Executor: applies one lifecycle transition to one engagement.

This is the atomic unit of work shared by the deadline scanner and by
human-triggered actions. For every call it:

    1. Re-reads the engagement (and cancellation request, if any)
    2. Re-validates the transition against EngagementStateMachine
    3. Re-checks the deadline for time-forced causes
    4. Issues ONE conditional write (StatusChange) to the store
    5. Notifies the interested parties after the write has committed

A precondition that no longer holds is not an error: the engagement was
already resolved by someone else, so the call returns a no-op outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from engagement_lifecycle.domain.deadlines import DeadlinePolicy
from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    EventType,
    NotificationType,
    TransitionCause,
)
from engagement_lifecycle.domain.exceptions import (
    CancellationRequestNotFoundError,
    EngagementNotFoundError,
    InvalidStateTransitionError,
)
from engagement_lifecycle.domain.records import StatusChange
from engagement_lifecycle.domain.state_machine import resolve_target
from engagement_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

    from engagement_lifecycle.domain.ports import EngagementStore, NotificationSink
    from engagement_lifecycle.domain.records import CancellationRecord, EngagementRecord

logger = get_logger(__name__)

# Outcome reasons
APPLIED = "applied"
PRECONDITION_FAILED = "precondition_failed"
DEADLINE_NOT_REACHED = "deadline_not_reached"
CANCELLATION_NOT_PENDING = "cancellation_not_pending"
CONCURRENT_UPDATE = "concurrent_update"

# The only state each cause may lead to
_CAUSE_TARGETS: dict[TransitionCause, EngagementStatus] = {
    TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED: EngagementStatus.COMPLETED,
    TransitionCause.DELIVERY_APPROVED: EngagementStatus.COMPLETED,
    TransitionCause.DELIVERY_REJECTED: EngagementStatus.PAID,
    TransitionCause.CANCELLATION_APPROVED: EngagementStatus.CANCELLED,
    TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED: EngagementStatus.CANCELLED,
}

_CAUSE_EVENTS: dict[TransitionCause, EventType] = {
    TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED: EventType.DELIVERY_AUTO_APPROVED,
    TransitionCause.DELIVERY_APPROVED: EventType.DELIVERY_APPROVED,
    TransitionCause.DELIVERY_REJECTED: EventType.DELIVERY_REJECTED,
    TransitionCause.CANCELLATION_APPROVED: EventType.CANCELLATION_APPROVED,
    TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED: EventType.CANCELLATION_AUTO_APPROVED,
}


@dataclass(frozen=True)
class PendingNotice:
    """A notification to send once the transition has committed."""

    recipient_id: str
    notification_type: NotificationType
    title: str
    message: str


@dataclass
class TransitionOutcome:
    """Result of apply_transition.

    `applied=False` means nothing was written: the state had already moved
    on, the deadline had not been reached, or a concurrent actor won the
    conditional write. `reason` says which.
    """

    engagement_id: uuid.UUID
    applied: bool
    previous_status: EngagementStatus
    status: EngagementStatus
    reason: str = APPLIED
    notifications_sent: int = 0
    notifications_failed: int = 0
    failed_recipients: list[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.applied


class TransitionExecutor:
    """Applies lifecycle transitions with store-enforced optimistic concurrency."""

    def __init__(
        self,
        store: EngagementStore,
        notifier: NotificationSink,
        policy: DeadlinePolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._policy = policy or DeadlinePolicy()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def policy(self) -> DeadlinePolicy:
        return self._policy

    async def apply_transition(
        self,
        engagement_id: uuid.UUID,
        target_status: EngagementStatus,
        cause: TransitionCause,
        *,
        now: datetime | None = None,
        cancellation_request_id: uuid.UUID | None = None,
        actor: str = "SYSTEM",
        feedback: str | None = None,
    ) -> TransitionOutcome:
        """Move one engagement to `target_status` because of `cause`.

        Raises:
            EngagementNotFoundError: The engagement does not exist.
            CancellationRequestNotFoundError: The cancellation request does not exist.
            InvalidStateTransitionError: `cause` can never lead to `target_status`.
            PersistenceError: The store failed; retry on the next cycle.
        """
        cause = TransitionCause(cause)
        target_status = EngagementStatus(target_status)
        now = now or self._clock()

        engagement = await self._store.get_engagement(engagement_id)
        if engagement is None:
            raise EngagementNotFoundError(str(engagement_id))

        if _CAUSE_TARGETS[cause] is not target_status:
            raise InvalidStateTransitionError(engagement.status.value, target_status.value)

        if cause.resolves_cancellation and cancellation_request_id is None:
            raise ValueError(f"{cause.value} requires a cancellation_request_id")

        # 1. State machine guard against the freshly read status
        reachable = resolve_target(engagement.status.value, cause.value)
        if reachable != target_status.value:
            return self._noop(engagement, PRECONDITION_FAILED, cause)

        # 2. Cancellation request must still be pending and belong to this engagement
        cancellation = None
        if cause.resolves_cancellation:
            cancellation = await self._store.get_cancellation_request(cancellation_request_id)
            if cancellation is None:
                raise CancellationRequestNotFoundError(str(cancellation_request_id))
            if (
                cancellation.engagement_id != engagement.id
                or cancellation.status is not CancellationStatus.PENDING
            ):
                return self._noop(engagement, CANCELLATION_NOT_PENDING, cause)

        # 3. Time-forced causes re-check their own deadline
        if not self._deadline_reached(cause, engagement, cancellation, now):
            return self._noop(engagement, DEADLINE_NOT_REACHED, cause)

        # 4. One conditional write
        change = self._build_change(engagement, cause, now, cancellation, actor, feedback)
        if not await self._store.transition_engagement(change):
            return self._noop(engagement, CONCURRENT_UPDATE, cause)

        logger.info(
            "transition.applied",
            engagement_id=str(engagement.id),
            cause=cause.value,
            old_status=engagement.status.value,
            new_status=target_status.value,
            actor=actor,
        )

        outcome = TransitionOutcome(
            engagement_id=engagement.id,
            applied=True,
            previous_status=engagement.status,
            status=target_status,
        )

        # 5. Notify after commit; failures never undo the transition
        for notice in self._notices(engagement, cause, cancellation):
            await self._dispatch(notice, engagement, outcome)

        return outcome

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _noop(
        self, engagement: EngagementRecord, reason: str, cause: TransitionCause
    ) -> TransitionOutcome:
        logger.info(
            "transition.skipped",
            engagement_id=str(engagement.id),
            cause=cause.value,
            status=engagement.status.value,
            reason=reason,
        )
        return TransitionOutcome(
            engagement_id=engagement.id,
            applied=False,
            previous_status=engagement.status,
            status=engagement.status,
            reason=reason,
        )

    def _deadline_reached(
        self,
        cause: TransitionCause,
        engagement: EngagementRecord,
        cancellation: CancellationRecord | None,
        now: datetime,
    ) -> bool:
        if cause is TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED:
            return engagement.delivered_at is not None and self._policy.acceptance_elapsed(
                engagement.delivered_at, now
            )
        if cause is TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED:
            return self._policy.cancellation_response_elapsed(cancellation.created_at, now)
        return True

    def _build_change(
        self,
        engagement: EngagementRecord,
        cause: TransitionCause,
        now: datetime,
        cancellation: CancellationRecord | None,
        actor: str,
        feedback: str | None,
    ) -> StatusChange:
        target = _CAUSE_TARGETS[cause]
        fields: dict = {}
        delivery_resolution = None
        metadata: dict = {"cause": cause.value}

        if cause is TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED:
            fields["completed_at"] = now
            delivery_resolution = DeliveryStatus.APPROVED
            feedback = feedback or (
                f"Automatically approved: no review within "
                f"{self._policy.delivery_acceptance.days} days of delivery."
            )
            metadata["delivered_at"] = engagement.delivered_at.isoformat()
        elif cause is TransitionCause.DELIVERY_APPROVED:
            fields["completed_at"] = now
            delivery_resolution = DeliveryStatus.APPROVED
        elif cause is TransitionCause.DELIVERY_REJECTED:
            # Back to PAID; the next delivery starts a fresh deadline
            fields["delivered_at"] = None
            fields["warning_sent_at"] = None
            delivery_resolution = DeliveryStatus.REJECTED
        else:
            fields["cancelled_at"] = now
            metadata["cancellation_request_id"] = str(cancellation.id)
            metadata["initiator_role"] = cancellation.initiator_role.value

        return StatusChange(
            engagement_id=engagement.id,
            expected_status=engagement.status,
            next_status=target,
            event_type=_CAUSE_EVENTS[cause],
            occurred_at=now,
            fields=fields,
            delivery_resolution=delivery_resolution,
            delivery_feedback=feedback if delivery_resolution is not None else None,
            cancellation_request_id=cancellation.id if cancellation else None,
            cancellation_resolution=CancellationStatus.APPROVED if cancellation else None,
            actor=actor,
            metadata=metadata,
        )

    def _notices(
        self,
        engagement: EngagementRecord,
        cause: TransitionCause,
        cancellation: CancellationRecord | None,
    ) -> list[PendingNotice]:
        title = engagement.title
        days = self._policy.delivery_acceptance.days

        if cause is TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED:
            return [
                PendingNotice(
                    engagement.contractor_id,
                    NotificationType.COMPLETED,
                    "Delivery automatically approved",
                    f'"{title}" was approved automatically. Your payout is now final.',
                ),
                PendingNotice(
                    engagement.requester_id,
                    NotificationType.COMPLETED,
                    "Delivery automatically approved",
                    f'"{title}" passed its {days}-day review deadline and was '
                    f"approved automatically.",
                ),
            ]
        if cause is TransitionCause.DELIVERY_APPROVED:
            return [
                PendingNotice(
                    engagement.contractor_id,
                    NotificationType.COMPLETED,
                    "Delivery approved",
                    f'Your delivery for "{title}" was approved. Your payout is now final.',
                ),
            ]
        if cause is TransitionCause.DELIVERY_REJECTED:
            return [
                PendingNotice(
                    engagement.contractor_id,
                    NotificationType.REVIEW,
                    "Revision requested",
                    f'The requester asked for changes to "{title}". '
                    f"Please review the feedback and deliver again.",
                ),
            ]

        initiator_id = engagement.party_id(cancellation.initiator_role)
        if cause is TransitionCause.CANCELLATION_APPROVED:
            return [
                PendingNotice(
                    initiator_id,
                    NotificationType.CANCELLED,
                    "Cancellation approved",
                    f'Your cancellation request for "{title}" was approved.',
                ),
            ]

        cancel_days = self._policy.cancellation_response.days
        return [
            PendingNotice(
                engagement.party_id(cancellation.responder_role),
                NotificationType.CANCELLED,
                "Cancellation approved automatically",
                f'The cancellation request for "{title}" received no response within '
                f"{cancel_days} days and was approved automatically.",
            ),
            PendingNotice(
                initiator_id,
                NotificationType.CANCELLED,
                "Cancellation approved",
                f'Your cancellation request for "{title}" was approved automatically.',
            ),
        ]

    async def _dispatch(
        self,
        notice: PendingNotice,
        engagement: EngagementRecord,
        outcome: TransitionOutcome,
    ) -> None:
        try:
            await self._notifier.notify(
                notice.recipient_id,
                notice.notification_type,
                notice.title,
                notice.message,
                related_engagement_id=engagement.id,
            )
        except Exception as exc:
            outcome.notifications_failed += 1
            outcome.failed_recipients.append(notice.recipient_id)
            logger.warning(
                "transition.notification_failed",
                engagement_id=str(engagement.id),
                recipient_id=notice.recipient_id,
                type=notice.notification_type.value,
                error=str(exc),
            )
        else:
            outcome.notifications_sent += 1
