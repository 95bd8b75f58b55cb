"""Payment gateway adapters: Stripe refunds and a simulated gateway.

Provides both a real Stripe integration and a simulated mode for local
development and the end-to-end simulation.

In simulation mode, refunds get fake "re_sim_..." identifiers.
In production mode, refunds go through the Stripe API with an idempotency
key derived from the engagement id, so a repeated call for the same
engagement can never create a second refund on Stripe's side.
"""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

import stripe

from engagement_lifecycle.domain.exceptions import (
    PaymentGatewayError,
    RefundAlreadyProcessedError,
)
from engagement_lifecycle.domain.ports import GatewayRefund
from engagement_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from engagement_lifecycle.config import Settings

logger = get_logger(__name__)

# Stripe error codes meaning the payment has nothing left to refund
ALREADY_REFUNDED_CODES = frozenset({"charge_already_refunded"})


class StripePaymentGateway:
    """Issues full refunds for captured Stripe PaymentIntents."""

    def __init__(self, api_key: str, api_version: str | None = None) -> None:
        if not api_key:
            raise ValueError("A Stripe secret key is required when payment_simulate is off")
        self._client = stripe.StripeClient(api_key, stripe_version=api_version)

    async def refund(
        self,
        payment_ref: str,
        reason_code: str,
        metadata: dict[str, str],
    ) -> GatewayRefund:
        params = {
            "payment_intent": payment_ref,
            "reason": reason_code,
            "metadata": metadata,
        }
        options = {}
        if engagement_id := metadata.get("engagement_id"):
            options["idempotency_key"] = f"refund-{engagement_id}"

        try:
            # The Stripe client is synchronous; keep the event loop free.
            refund = await asyncio.to_thread(
                self._client.refunds.create, params=params, options=options
            )
        except stripe.InvalidRequestError as exc:
            if exc.code in ALREADY_REFUNDED_CODES:
                logger.warning(
                    "payment.refund_already_processed",
                    payment_ref=payment_ref,
                    code=exc.code,
                )
                raise RefundAlreadyProcessedError(
                    exc.user_message or str(exc), gateway_code=exc.code
                ) from exc
            logger.error("payment.refund_rejected", payment_ref=payment_ref, error=str(exc))
            raise PaymentGatewayError(exc.user_message or str(exc), gateway_code=exc.code) from exc
        except stripe.StripeError as exc:
            logger.error("payment.refund_failed", payment_ref=payment_ref, error=str(exc))
            raise PaymentGatewayError(exc.user_message or str(exc), gateway_code=exc.code) from exc

        logger.info(
            "payment.refund_created",
            refund_ref=refund.id,
            amount=refund.amount,
            status=refund.status,
        )
        return GatewayRefund(refund_ref=refund.id, amount=refund.amount, status=refund.status)


class SimulatedPaymentGateway:
    """In-process stand-in that mimics Stripe's refund semantics.

    A payment can be refunded once; a second attempt raises
    RefundAlreadyProcessedError exactly like the real gateway would.
    """

    def __init__(self) -> None:
        self._refunded: dict[str, GatewayRefund] = {}

    @property
    def refunds(self) -> dict[str, GatewayRefund]:
        return dict(self._refunded)

    async def refund(
        self,
        payment_ref: str,
        reason_code: str,
        metadata: dict[str, str],
    ) -> GatewayRefund:
        if payment_ref in self._refunded:
            raise RefundAlreadyProcessedError(
                f"Charge for {payment_ref} has already been refunded.",
                gateway_code="charge_already_refunded",
            )

        result = GatewayRefund(
            refund_ref="re_sim_" + uuid.uuid4().hex[:24],
            amount=_minor_units(metadata.get("final_price")),
            status="succeeded",
        )
        self._refunded[payment_ref] = result
        logger.info(
            "payment.refund_simulated",
            refund_ref=result.refund_ref,
            payment_ref=payment_ref,
            reason=reason_code,
            simulated=True,
        )
        return result


def _minor_units(amount: str | None) -> int:
    if not amount:
        return 0
    try:
        return int(Decimal(amount) * 100)
    except InvalidOperation:
        return 0


def build_payment_gateway(settings: Settings) -> StripePaymentGateway | SimulatedPaymentGateway:
    """Pick the gateway implementation from settings."""
    if settings.payment_simulate:
        return SimulatedPaymentGateway()
    return StripePaymentGateway(
        api_key=settings.stripe_secret_key,
        api_version=settings.stripe_api_version,
    )
