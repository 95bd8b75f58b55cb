"""Tests for the Stripe and simulated payment gateways."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import stripe

from engagement_lifecycle.config import Settings
from engagement_lifecycle.domain.exceptions import (
    PaymentGatewayError,
    RefundAlreadyProcessedError,
)
from engagement_lifecycle.infrastructure.payment_gateway import (
    SimulatedPaymentGateway,
    StripePaymentGateway,
    build_payment_gateway,
)

METADATA = {"engagement_id": "6f1c7c1e-0000-4000-8000-000000000001", "final_price": "150.00"}


class FakeRefunds:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict] = []

    def create(self, params, options):  # noqa: ANN001, ANN201
        self.calls.append({"params": params, "options": options})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(id="re_live_1", amount=15000, status="succeeded")


def stripe_gateway(refunds: FakeRefunds) -> StripePaymentGateway:
    gateway = StripePaymentGateway(api_key="sk_test_dummy")
    gateway._client = SimpleNamespace(refunds=refunds)
    return gateway


class TestStripePaymentGateway:
    @pytest.mark.asyncio
    async def test_creates_refund_with_idempotency_key(self) -> None:
        refunds = FakeRefunds()
        gateway = stripe_gateway(refunds)

        result = await gateway.refund("pi_123", "requested_by_customer", METADATA)

        assert result.refund_ref == "re_live_1"
        assert result.amount == 15000
        (call,) = refunds.calls
        assert call["params"] == {
            "payment_intent": "pi_123",
            "reason": "requested_by_customer",
            "metadata": METADATA,
        }
        assert call["options"] == {"idempotency_key": f"refund-{METADATA['engagement_id']}"}

    @pytest.mark.asyncio
    async def test_already_refunded_is_classified(self) -> None:
        error = stripe.InvalidRequestError(
            "Charge ch_123 has already been refunded.", param=None, code="charge_already_refunded"
        )
        gateway = stripe_gateway(FakeRefunds(error))

        with pytest.raises(RefundAlreadyProcessedError) as exc_info:
            await gateway.refund("pi_123", "requested_by_customer", METADATA)
        assert exc_info.value.gateway_code == "charge_already_refunded"

    @pytest.mark.asyncio
    async def test_other_invalid_request_is_gateway_error(self) -> None:
        error = stripe.InvalidRequestError("No such payment_intent", param="payment_intent")
        gateway = stripe_gateway(FakeRefunds(error))

        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.refund("pi_missing", "requested_by_customer", METADATA)
        assert not isinstance(exc_info.value, RefundAlreadyProcessedError)

    @pytest.mark.asyncio
    async def test_connection_error_is_gateway_error(self) -> None:
        gateway = stripe_gateway(FakeRefunds(stripe.APIConnectionError("Network is unreachable")))

        with pytest.raises(PaymentGatewayError, match="unreachable"):
            await gateway.refund("pi_123", "requested_by_customer", METADATA)

    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError):
            StripePaymentGateway(api_key="")


class TestSimulatedPaymentGateway:
    @pytest.mark.asyncio
    async def test_refund_once(self) -> None:
        gateway = SimulatedPaymentGateway()

        result = await gateway.refund("pi_sim_1", "requested_by_customer", METADATA)

        assert result.refund_ref.startswith("re_sim_")
        assert result.amount == 15000
        assert gateway.refunds == {"pi_sim_1": result}

    @pytest.mark.asyncio
    async def test_second_refund_is_rejected(self) -> None:
        gateway = SimulatedPaymentGateway()
        await gateway.refund("pi_sim_1", "requested_by_customer", METADATA)

        with pytest.raises(RefundAlreadyProcessedError):
            await gateway.refund("pi_sim_1", "requested_by_customer", METADATA)


class TestBuildPaymentGateway:
    def test_simulated_by_setting(self) -> None:
        settings = Settings(payment_simulate=True)
        assert isinstance(build_payment_gateway(settings), SimulatedPaymentGateway)

    def test_stripe_when_not_simulated(self) -> None:
        settings = Settings(payment_simulate=False, stripe_secret_key="sk_test_dummy")
        assert isinstance(build_payment_gateway(settings), StripePaymentGateway)
