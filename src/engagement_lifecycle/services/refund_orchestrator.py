"""Refund Orchestrator: idempotently drives a full refund for a cancelled engagement.

Order of checks:
    1. refund_ref already recorded      -> success, existing reference, no gateway call
    2. no payment_intent_ref            -> NO_PAYMENT (a legitimate outcome)
    3. engagement not cancelled         -> NOT_CANCELLED
    4. gateway refund                   -> GATEWAY_FAILURE on any gateway error
    5. record refund_ref / refunded_at  -> best effort; never retries the gateway

Refund failures are returned, not raised: the caller (the scan cycle or an
admin action) decides whether to try again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from engagement_lifecycle.domain.enums import EngagementStatus, RefundErrorKind
from engagement_lifecycle.domain.exceptions import (
    EngagementNotFoundError,
    PaymentGatewayError,
    PersistenceError,
    RefundAlreadyProcessedError,
)
from engagement_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

    from engagement_lifecycle.domain.ports import EngagementStore, PaymentGateway

logger = get_logger(__name__)

DEFAULT_REASON_CODE = "requested_by_customer"


@dataclass(frozen=True)
class RefundOutcome:
    """A refund that exists on the gateway side."""

    refund_ref: str
    refunded_at: datetime | None
    amount: int | None = None
    already_refunded: bool = False
    recorded: bool = True


@dataclass(frozen=True)
class RefundResult:
    """Either `outcome` (success) or `error` is set, never both."""

    engagement_id: uuid.UUID
    outcome: RefundOutcome | None = None
    error: RefundErrorKind | None = None
    message: str = ""
    already_refunded_upstream: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is not None

    @property
    def refund_ref(self) -> str | None:
        return self.outcome.refund_ref if self.outcome else None


class RefundOrchestrator:
    """Refunds the captured payment of a cancelled engagement at most once."""

    def __init__(
        self,
        store: EngagementStore,
        gateway: PaymentGateway,
        reason_code: str = DEFAULT_REASON_CODE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._reason_code = reason_code
        self._clock = clock or (lambda: datetime.now(UTC))

    async def refund(self, engagement_id: uuid.UUID, reason: str) -> RefundResult:
        """Refund the engagement's payment in full.

        Raises:
            EngagementNotFoundError: The engagement does not exist.
            PersistenceError: The initial read failed.
        """
        engagement = await self._store.get_engagement(engagement_id)
        if engagement is None:
            raise EngagementNotFoundError(str(engagement_id))

        if engagement.refund_ref is not None:
            logger.info(
                "refund.already_recorded",
                engagement_id=str(engagement_id),
                refund_ref=engagement.refund_ref,
            )
            return RefundResult(
                engagement_id=engagement_id,
                outcome=RefundOutcome(
                    refund_ref=engagement.refund_ref,
                    refunded_at=engagement.refunded_at,
                    already_refunded=True,
                ),
            )

        if not engagement.payment_intent_ref:
            logger.info("refund.no_payment", engagement_id=str(engagement_id))
            return RefundResult(
                engagement_id=engagement_id,
                error=RefundErrorKind.NO_PAYMENT,
                message="Engagement has no captured payment to refund",
            )

        if engagement.status is not EngagementStatus.CANCELLED:
            logger.warning(
                "refund.not_cancelled",
                engagement_id=str(engagement_id),
                status=engagement.status.value,
            )
            return RefundResult(
                engagement_id=engagement_id,
                error=RefundErrorKind.NOT_CANCELLED,
                message=f"Only cancelled engagements can be refunded (status: {engagement.status})",
            )

        metadata = {"engagement_id": str(engagement_id), "reason": reason}
        if engagement.final_price is not None:
            metadata["final_price"] = str(engagement.final_price)

        try:
            gateway_refund = await self._gateway.refund(
                engagement.payment_intent_ref, self._reason_code, metadata
            )
        except PaymentGatewayError as exc:
            upstream = isinstance(exc, RefundAlreadyProcessedError)
            logger.error(
                "refund.gateway_failed",
                engagement_id=str(engagement_id),
                payment_ref=engagement.payment_intent_ref,
                already_refunded_upstream=upstream,
                error=exc.message,
            )
            return RefundResult(
                engagement_id=engagement_id,
                error=RefundErrorKind.GATEWAY_FAILURE,
                message=exc.message,
                already_refunded_upstream=upstream,
            )

        refunded_at = self._clock()
        recorded = await self._record(engagement_id, gateway_refund.refund_ref, refunded_at, reason)

        logger.info(
            "refund.issued",
            engagement_id=str(engagement_id),
            refund_ref=gateway_refund.refund_ref,
            amount=gateway_refund.amount,
            recorded=recorded,
        )
        return RefundResult(
            engagement_id=engagement_id,
            outcome=RefundOutcome(
                refund_ref=gateway_refund.refund_ref,
                refunded_at=refunded_at,
                amount=gateway_refund.amount,
                recorded=recorded,
            ),
        )

    async def _record(
        self, engagement_id: uuid.UUID, refund_ref: str, refunded_at: datetime, reason: str
    ) -> bool:
        # The money has moved: a failure here is an operator alert, not a retry.
        try:
            recorded = await self._store.record_refund(
                engagement_id, refund_ref, refunded_at, metadata={"reason": reason}
            )
        except PersistenceError as exc:
            logger.error(
                "refund.record_failed",
                engagement_id=str(engagement_id),
                refund_ref=refund_ref,
                alert=True,
                error=exc.message,
            )
            return False

        if not recorded:
            logger.error(
                "refund.record_conflict",
                engagement_id=str(engagement_id),
                refund_ref=refund_ref,
                alert=True,
            )
        return recorded
