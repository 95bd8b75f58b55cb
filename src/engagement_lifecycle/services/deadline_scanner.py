"""Deadline Scanner: one pass over every time-driven lifecycle rule.

Sweeps, in order, each bounded to one page of candidates:

    1. delivery warning        delivered, delivered_at in the warning window
    2. cancellation warning    pending request, created_at in the warning window
    3. delivery auto-action    delivered, delivered_at <= now - D
    4. cancellation auto-action pending request, created_at <= now - D'

Warnings are claimed (warning_sent_at) before the notice goes out, so a
re-run of the same cycle can never warn twice. Auto-actions go through the
TransitionExecutor, which re-validates every candidate before writing.

Every candidate is isolated: its failure becomes one BatchReport error and
the cycle moves on. A pending request whose engagement can no longer be
cancelled is closed as rejected, so it never occupies a page again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from engagement_lifecycle.domain.deadlines import DeadlinePolicy
from engagement_lifecycle.domain.enums import (
    CancellationStatus,
    EngagementStatus,
    NotificationType,
    RefundErrorKind,
    TransitionCause,
)
from engagement_lifecycle.domain.exceptions import (
    CancellationRequestNotFoundError,
    EngagementNotFoundError,
)
from engagement_lifecycle.domain.state_machine import resolve_target
from engagement_lifecycle.logging_config import get_logger
from engagement_lifecycle.services.refund_orchestrator import (
    DEFAULT_REASON_CODE,
    RefundOrchestrator,
)
from engagement_lifecycle.services.transition_executor import (
    PRECONDITION_FAILED,
    TransitionExecutor,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from engagement_lifecycle.domain.ports import (
        EngagementStore,
        NotificationSink,
        PaymentGateway,
    )
    from engagement_lifecycle.domain.records import CancellationRecord, EngagementRecord

logger = get_logger(__name__)

AUTO_CANCELLATION_REFUND_REASON = "Cancellation auto-approved after response deadline"


@dataclass(frozen=True)
class BatchItemError:
    id: str
    message: str


@dataclass
class BatchReport:
    """What one scan cycle did. This is what an operator inspects."""

    scanned_at: datetime
    delivery_warnings: int = 0
    cancellation_warnings: int = 0
    deliveries_auto_completed: int = 0
    cancellations_auto_approved: int = 0
    refunds_issued: int = 0
    skipped: int = 0
    notification_failures: int = 0
    errors: list[BatchItemError] = field(default_factory=list)

    @property
    def warnings_sent(self) -> int:
        return self.delivery_warnings + self.cancellation_warnings

    @property
    def auto_actions_applied(self) -> int:
        return self.deliveries_auto_completed + self.cancellations_auto_approved

    def add_error(self, item_id: object, message: str) -> None:
        self.errors.append(BatchItemError(id=str(item_id), message=message))


@dataclass(frozen=True)
class ScanDependencies:
    """Everything a scan cycle talks to. The gateway is optional: without
    it, auto-approved cancellations are not refunded in-cycle."""

    store: EngagementStore
    notifier: NotificationSink
    gateway: PaymentGateway | None = None
    policy: DeadlinePolicy = field(default_factory=DeadlinePolicy)
    page_size: int = 50
    refund_reason_code: str = DEFAULT_REASON_CODE


class DeadlineScanner:
    """Runs the warning and auto-action sweeps for one point in time."""

    def __init__(
        self,
        store: EngagementStore,
        notifier: NotificationSink,
        executor: TransitionExecutor,
        refunds: RefundOrchestrator | None = None,
        policy: DeadlinePolicy | None = None,
        page_size: int = 50,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._store = store
        self._notifier = notifier
        self._executor = executor
        self._refunds = refunds
        self._policy = policy or executor.policy
        self._page_size = page_size

    async def run_scan_cycle(self, now: datetime) -> BatchReport:
        report = BatchReport(scanned_at=now)
        structlog.contextvars.bind_contextvars(scan_cycle=now.isoformat())
        try:
            await self._run_sweeps(now, report)
        finally:
            structlog.contextvars.unbind_contextvars("scan_cycle")
        return report

    async def _run_sweeps(self, now: datetime, report: BatchReport) -> None:
        logger.info("scan.cycle_started", now=now.isoformat(), page_size=self._page_size)

        await self._sweep(
            "delivery_warning",
            lambda: self._store.query_engagements(
                status=EngagementStatus.DELIVERED,
                delivered_within=self._policy.delivery_warning_window(now),
                warning_unsent=True,
                limit=self._page_size,
            ),
            lambda engagement: self._warn_delivery(engagement, now, report),
            report,
        )
        await self._sweep(
            "cancellation_warning",
            lambda: self._store.query_cancellation_requests(
                status=CancellationStatus.PENDING,
                created_within=self._policy.cancellation_warning_window(now),
                warning_unsent=True,
                limit=self._page_size,
            ),
            lambda request: self._warn_cancellation(request, now, report),
            report,
        )
        await self._sweep(
            "delivery_auto_action",
            lambda: self._store.query_engagements(
                status=EngagementStatus.DELIVERED,
                delivered_within=self._policy.delivery_auto_action_window(now),
                limit=self._page_size,
            ),
            lambda engagement: self._auto_complete(engagement, now, report),
            report,
        )
        await self._sweep(
            "cancellation_auto_action",
            lambda: self._store.query_cancellation_requests(
                status=CancellationStatus.PENDING,
                created_within=self._policy.cancellation_auto_action_window(now),
                limit=self._page_size,
            ),
            lambda request: self._auto_cancel(request, now, report),
            report,
        )

        logger.info(
            "scan.cycle_completed",
            warnings_sent=report.warnings_sent,
            auto_actions_applied=report.auto_actions_applied,
            refunds_issued=report.refunds_issued,
            skipped=report.skipped,
            notification_failures=report.notification_failures,
            errors=len(report.errors),
        )

    # ------------------------------------------------------------------
    # Sweep driver
    # ------------------------------------------------------------------

    async def _sweep(
        self,
        name: str,
        query: Callable[[], Awaitable[list]],
        handle: Callable[[object], Awaitable[None]],
        report: BatchReport,
    ) -> None:
        try:
            candidates = await query()
        except Exception as exc:
            logger.error("scan.query_failed", sweep=name, error=str(exc))
            report.add_error(name, f"candidate query failed: {exc}")
            return

        logger.debug("scan.sweep_started", sweep=name, candidates=len(candidates))
        for candidate in candidates:
            try:
                await handle(candidate)
            except (EngagementNotFoundError, CancellationRequestNotFoundError):
                logger.info("scan.candidate_vanished", sweep=name, id=str(candidate.id))
                report.skipped += 1
            except Exception as exc:
                logger.error(
                    "scan.candidate_failed",
                    sweep=name,
                    id=str(candidate.id),
                    error=str(exc),
                )
                report.add_error(candidate.id, str(exc))

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    async def _warn_delivery(
        self, engagement: EngagementRecord, now: datetime, report: BatchReport
    ) -> None:
        if not await self._store.mark_engagement_warned(engagement.id, now):
            report.skipped += 1
            return

        deadline = self._policy.acceptance_deadline(engagement.delivered_at)
        sent = await self._notify(
            engagement.requester_id,
            "Review deadline approaching",
            f'"{engagement.title}" will be approved automatically in '
            f"{self._policy.warning_lead_days} days ({deadline:%Y-%m-%d %H:%M} UTC) "
            f"unless you review the delivery.",
            engagement.id,
            report,
        )
        if sent:
            report.delivery_warnings += 1

    async def _warn_cancellation(
        self, request: CancellationRecord, now: datetime, report: BatchReport
    ) -> None:
        engagement = await self._store.get_engagement(request.engagement_id)
        if engagement is None:
            raise EngagementNotFoundError(str(request.engagement_id))
        if resolve_target(
            engagement.status.value, TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED.value
        ) is None:
            await self._close_stale_cancellation(request, now, report)
            return

        if not await self._store.mark_cancellation_warned(request.id, now):
            report.skipped += 1
            return

        deadline = self._policy.cancellation_deadline(request.created_at)
        sent = await self._notify(
            engagement.party_id(request.responder_role),
            "Cancellation response deadline approaching",
            f'The cancellation request for "{engagement.title}" will be approved '
            f"automatically in {self._policy.warning_lead_days} days "
            f"({deadline:%Y-%m-%d %H:%M} UTC) unless you respond.",
            engagement.id,
            report,
        )
        if sent:
            report.cancellation_warnings += 1

    async def _notify(
        self,
        recipient_id: str,
        title: str,
        message: str,
        engagement_id: uuid.UUID,
        report: BatchReport,
    ) -> bool:
        try:
            await self._notifier.notify(
                recipient_id,
                NotificationType.AUTO_APPROVAL_WARNING,
                title,
                message,
                related_engagement_id=engagement_id,
            )
        except Exception as exc:
            # Already claimed: the warning will not be retried.
            report.notification_failures += 1
            logger.warning(
                "scan.warning_notification_failed",
                engagement_id=str(engagement_id),
                recipient_id=recipient_id,
                error=str(exc),
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Auto-actions
    # ------------------------------------------------------------------

    async def _auto_complete(
        self, engagement: EngagementRecord, now: datetime, report: BatchReport
    ) -> None:
        outcome = await self._executor.apply_transition(
            engagement.id,
            EngagementStatus.COMPLETED,
            TransitionCause.ACCEPTANCE_DEADLINE_ELAPSED,
            now=now,
        )
        report.notification_failures += outcome.notifications_failed
        if outcome.applied:
            report.deliveries_auto_completed += 1
        else:
            report.skipped += 1

    async def _auto_cancel(
        self, request: CancellationRecord, now: datetime, report: BatchReport
    ) -> None:
        outcome = await self._executor.apply_transition(
            request.engagement_id,
            EngagementStatus.CANCELLED,
            TransitionCause.CANCELLATION_RESPONSE_DEADLINE_ELAPSED,
            now=now,
            cancellation_request_id=request.id,
        )
        report.notification_failures += outcome.notifications_failed
        if outcome.reason == PRECONDITION_FAILED:
            await self._close_stale_cancellation(request, now, report)
            return
        if not outcome.applied:
            report.skipped += 1
            return
        report.cancellations_auto_approved += 1

        if self._refunds is None:
            return

        # The cancellation stays committed whatever the refund does.
        result = await self._refunds.refund(
            request.engagement_id, AUTO_CANCELLATION_REFUND_REASON
        )
        if result.ok:
            report.refunds_issued += 1
        elif result.error is not RefundErrorKind.NO_PAYMENT:
            report.add_error(
                request.engagement_id, f"refund failed ({result.error}): {result.message}"
            )

    async def _close_stale_cancellation(
        self, request: CancellationRecord, now: datetime, report: BatchReport
    ) -> None:
        report.skipped += 1
        if await self._store.close_cancellation_request(request.id, now):
            logger.info(
                "scan.stale_cancellation_closed",
                cancellation_request_id=str(request.id),
                engagement_id=str(request.engagement_id),
            )


async def run_scan_cycle(now: datetime, deps: ScanDependencies) -> BatchReport:
    """Build the services from `deps` and run one scan cycle at `now`."""
    executor = TransitionExecutor(deps.store, deps.notifier, deps.policy)
    refunds = (
        RefundOrchestrator(deps.store, deps.gateway, reason_code=deps.refund_reason_code)
        if deps.gateway is not None
        else None
    )
    scanner = DeadlineScanner(
        deps.store,
        deps.notifier,
        executor,
        refunds=refunds,
        policy=deps.policy,
        page_size=deps.page_size,
    )
    return await scanner.run_scan_cycle(now)
