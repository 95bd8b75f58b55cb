#!/usr/bin/env python3
"""Engagement Lifecycle: End-to-End Simulation.

Runs the deadline scanner and the refund orchestrator against an in-memory
SQLite database with a fixed clock and the simulated payment gateway.

    Scenario A: Acceptance warning
        - Engagement delivered at T0
        - Scan at T0 + D - 3 days -> one warning to the requester, still DELIVERED

    Scenario B: Auto-approval
        - Same engagement, no review
        - Scan at T0 + D + 1 hour -> COMPLETED, both parties notified

    Scenario C: Cancellation without payment
        - Unpaid engagement, cancellation request ignored past D'
        - Scan auto-approves the cancellation -> refund() returns NO_PAYMENT

    Scenario D: Gateway failure
        - Paid engagement cancelled, gateway fails -> GATEWAY_FAILURE, nothing recorded
        - Retry with a healthy gateway -> refunded once, second call returns the same ref

Usage:
    python simulation.py
    python simulation.py --scenario B
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from engagement_lifecycle.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from engagement_lifecycle.domain.deadlines import DeadlinePolicy  # noqa: E402
from engagement_lifecycle.domain.enums import (  # noqa: E402
    CancellationStatus,
    DeliveryStatus,
    EngagementStatus,
    PartyRole,
)
from engagement_lifecycle.domain.exceptions import PaymentGatewayError  # noqa: E402
from engagement_lifecycle.infrastructure.database.engine import (  # noqa: E402
    create_session_factory,
)
from engagement_lifecycle.infrastructure.database.orm_models import (  # noqa: E402
    Base,
    CancellationRequest,
    Delivery,
    Engagement,
)
from engagement_lifecycle.infrastructure.database.repositories import (  # noqa: E402
    NotificationRepository,
)
from engagement_lifecycle.infrastructure.database.store import (  # noqa: E402
    SqlAlchemyEngagementStore,
)
from engagement_lifecycle.infrastructure.notifications import (  # noqa: E402
    DatabaseNotificationSink,
)
from engagement_lifecycle.infrastructure.payment_gateway import (  # noqa: E402
    SimulatedPaymentGateway,
)
from engagement_lifecycle.services.deadline_scanner import (  # noqa: E402
    ScanDependencies,
    run_scan_cycle,
)
from engagement_lifecycle.services.refund_orchestrator import RefundOrchestrator  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
POLICY = DeadlinePolicy()

REQUESTER = "requester-aiko"
CONTRACTOR = "contractor-ren"

# Module-level state
_engine = None
_session_factory = None


class FailingGateway:
    """Simulated gateway that is down for every call."""

    async def refund(self, payment_ref, reason_code, metadata):  # noqa: ANN001
        raise PaymentGatewayError("Simulated gateway timeout", gateway_code="api_connection_error")


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database() -> None:
    """Create an in-memory SQLite database with every lifecycle table."""
    global _engine, _session_factory
    _engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _session_factory = create_session_factory(_engine)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.sqlite_initialized")


async def shutdown_database() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def deps(gateway=None) -> ScanDependencies:  # noqa: ANN001
    return ScanDependencies(
        store=SqlAlchemyEngagementStore(_session_factory),
        notifier=DatabaseNotificationSink(_session_factory),
        gateway=gateway,
        policy=POLICY,
    )


async def seed_delivered(title: str, delivered_at: datetime) -> uuid.UUID:
    async with _session_factory() as session:
        engagement = Engagement(
            requester_id=REQUESTER,
            contractor_id=CONTRACTOR,
            title=title,
            status=EngagementStatus.DELIVERED.value,
            final_price=Decimal("120.00"),
            payment_intent_ref="pi_sim_" + uuid.uuid4().hex[:16],
            paid_at=delivered_at - timedelta(days=5),
            delivered_at=delivered_at,
        )
        session.add(engagement)
        await session.flush()
        session.add(
            Delivery(
                engagement_id=engagement.id,
                status=DeliveryStatus.PENDING.value,
                created_at=delivered_at,
            )
        )
        await session.commit()
        return engagement.id


async def seed_cancellation(
    title: str, created_at: datetime, payment_intent_ref: str | None
) -> uuid.UUID:
    async with _session_factory() as session:
        engagement = Engagement(
            requester_id=REQUESTER,
            contractor_id=CONTRACTOR,
            title=title,
            status=(
                EngagementStatus.PAID.value
                if payment_intent_ref
                else EngagementStatus.CONTRACTED.value
            ),
            final_price=Decimal("80.00"),
            payment_intent_ref=payment_intent_ref,
        )
        session.add(engagement)
        await session.flush()
        session.add(
            CancellationRequest(
                engagement_id=engagement.id,
                initiator_role=PartyRole.REQUESTER.value,
                reason="Project postponed",
                status=CancellationStatus.PENDING.value,
                created_at=created_at,
            )
        )
        await session.commit()
        return engagement.id


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


def print_report(report) -> None:  # noqa: ANN001
    print(f"  Warnings sent:        {report.warnings_sent}")
    print(f"  Auto-actions applied: {report.auto_actions_applied}")
    print(f"  Refunds issued:       {report.refunds_issued}")
    print(f"  Skipped:              {report.skipped}")
    for err in report.errors:
        print(f"  ❌ {err.id}: {err.message}")


async def print_engagement(engagement_id: uuid.UUID) -> None:
    store = SqlAlchemyEngagementStore(_session_factory)
    engagement = await store.get_engagement(engagement_id)
    print(f"  Status: {engagement.status}")
    if engagement.warning_sent_at:
        print(f"  Warning sent at: {engagement.warning_sent_at:%Y-%m-%d %H:%M}")
    if engagement.completed_at:
        print(f"  Completed at: {engagement.completed_at:%Y-%m-%d %H:%M}")
    print(f"  Refund ref: {engagement.refund_ref or '-'}")


async def print_inbox(recipient_id: str) -> None:
    async with _session_factory() as session:
        notes = await NotificationRepository(session).get_by_recipient(recipient_id)
    print(f"  Inbox of {recipient_id}:")
    for note in notes:
        print(f"    [{note.type}] {note.title}")


async def print_audit_trail(engagement_id: uuid.UUID) -> None:
    store = SqlAlchemyEngagementStore(_session_factory)
    events = await store.list_events(engagement_id)
    print("\n  Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "-"
        print(f"    {i}. [{evt.event_type}] {old} -> {evt.new_status} (by {evt.actor})")
    print()


# ===========================================================================
# Scenarios A and B: warning, then auto-approval
# ===========================================================================
async def scenario_a_warning() -> uuid.UUID:
    banner("SCENARIO A: Acceptance warning at T0 + D - 3 days")
    engagement_id = await seed_delivered("Logo redesign", T0)

    now = T0 + POLICY.delivery_acceptance - POLICY.warning_lead
    section(f"Scan at {now:%Y-%m-%d %H:%M}")
    print_report(await run_scan_cycle(now, deps()))

    section("Same scan again (at-least-once scheduler)")
    print_report(await run_scan_cycle(now, deps()))

    await print_engagement(engagement_id)
    await print_inbox(REQUESTER)
    return engagement_id


async def scenario_b_auto_approval(engagement_id: uuid.UUID | None = None) -> None:
    banner("SCENARIO B: Auto-approval at T0 + D + 1 hour")
    if engagement_id is None:
        engagement_id = await seed_delivered("Logo redesign", T0)

    now = T0 + POLICY.delivery_acceptance + timedelta(hours=1)
    section(f"Scan at {now:%Y-%m-%d %H:%M}")
    print_report(await run_scan_cycle(now, deps()))

    await print_engagement(engagement_id)
    await print_inbox(CONTRACTOR)
    await print_audit_trail(engagement_id)


# ===========================================================================
# Scenario C: cancellation of an unpaid engagement
# ===========================================================================
async def scenario_c_no_payment() -> None:
    banner("SCENARIO C: Auto-approved cancellation, nothing to refund")
    engagement_id = await seed_cancellation("Album cover", T0, payment_intent_ref=None)

    now = T0 + POLICY.cancellation_response + timedelta(hours=1)
    section(f"Scan at {now:%Y-%m-%d %H:%M}")
    print_report(await run_scan_cycle(now, deps(SimulatedPaymentGateway())))

    section("Manual refund attempt")
    orchestrator = RefundOrchestrator(
        SqlAlchemyEngagementStore(_session_factory), SimulatedPaymentGateway()
    )
    result = await orchestrator.refund(engagement_id, "Cancellation approved")
    print(f"  Result: error={result.error} message={result.message!r}")
    await print_engagement(engagement_id)


# ===========================================================================
# Scenario D: gateway failure, then a clean retry
# ===========================================================================
async def scenario_d_gateway_failure() -> None:
    banner("SCENARIO D: Gateway failure leaves no refund record")
    engagement_id = await seed_cancellation(
        "Character sheet", T0, payment_intent_ref="pi_sim_" + uuid.uuid4().hex[:16]
    )
    store = SqlAlchemyEngagementStore(_session_factory)

    now = T0 + POLICY.cancellation_response + timedelta(hours=1)
    section("Scan with the gateway down")
    print_report(await run_scan_cycle(now, deps(FailingGateway())))
    await print_engagement(engagement_id)

    section("Admin retries with the gateway back up")
    orchestrator = RefundOrchestrator(store, SimulatedPaymentGateway())
    first = await orchestrator.refund(engagement_id, "Cancellation auto-approved")
    second = await orchestrator.refund(engagement_id, "Cancellation auto-approved")
    icon = "✅" if first.refund_ref == second.refund_ref else "❌"
    print(f"  {icon} first={first.refund_ref} second={second.refund_ref}")
    await print_engagement(engagement_id)
    await print_audit_trail(engagement_id)


# ===========================================================================
# Main
# ===========================================================================
async def run_all() -> None:
    """Run all scenarios sequentially against one database."""
    await init_database()
    try:
        engagement_id = await scenario_a_warning()
        await scenario_b_auto_approval(engagement_id)
        await scenario_c_no_payment()
        await scenario_d_gateway_failure()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


async def run_scenario(name: str) -> None:
    """Run a specific scenario on a fresh database."""
    scenarios = {
        "A": scenario_a_warning,
        "B": scenario_b_auto_approval,
        "C": scenario_c_no_payment,
        "D": scenario_d_gateway_failure,
    }
    if name not in scenarios:
        print(f"Unknown scenario {name}. Available: A, B, C, D")
        return

    await init_database()
    try:
        await scenarios[name]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Engagement Lifecycle Simulation")
    parser.add_argument(
        "--scenario",
        type=str.upper,
        default="",
        help="Run a specific scenario (A, B, C or D). Default: run all.",
    )
    args = parser.parse_args()

    if not args.scenario:
        asyncio.run(run_all())
    else:
        asyncio.run(run_scenario(args.scenario))
