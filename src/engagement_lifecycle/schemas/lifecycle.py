"""Pydantic schemas for the lifecycle API.

The scheduler-facing scan report is camelCase on the wire
(`warningsSent`, `autoActionsApplied`, ...). These schemas are separate
from the service dataclasses to keep the API shape independent of the
service layer.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from engagement_lifecycle.domain.enums import RefundErrorKind
from engagement_lifecycle.services.deadline_scanner import BatchReport
from engagement_lifecycle.services.refund_orchestrator import RefundResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Deadline scan
# ---------------------------------------------------------------------------


class BatchItemErrorResponse(CamelModel):
    id: str
    message: str


class BatchReportResponse(CamelModel):
    """Result of one deadline scan cycle.

    Returned with HTTP 200 whenever the cycle completed, even if some
    items failed: per-item failures are listed in `errors`.
    """

    scanned_at: datetime
    warnings_sent: int
    auto_actions_applied: int
    delivery_warnings: int = 0
    cancellation_warnings: int = 0
    deliveries_auto_completed: int = 0
    cancellations_auto_approved: int = 0
    refunds_issued: int = 0
    skipped: int = 0
    notification_failures: int = 0
    errors: list[BatchItemErrorResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: BatchReport) -> BatchReportResponse:
        return cls(
            scanned_at=report.scanned_at,
            warnings_sent=report.warnings_sent,
            auto_actions_applied=report.auto_actions_applied,
            delivery_warnings=report.delivery_warnings,
            cancellation_warnings=report.cancellation_warnings,
            deliveries_auto_completed=report.deliveries_auto_completed,
            cancellations_auto_approved=report.cancellations_auto_approved,
            refunds_issued=report.refunds_issued,
            skipped=report.skipped,
            notification_failures=report.notification_failures,
            errors=[BatchItemErrorResponse(id=e.id, message=e.message) for e in report.errors],
        )


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


class RefundRequest(BaseModel):
    """Request body for an admin-triggered refund."""

    reason: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Free-text reason, forwarded to the gateway as metadata",
        examples=["Cancellation approved by both parties"],
    )


class RefundResponse(CamelModel):
    engagement_id: uuid.UUID
    refunded: bool
    refund_ref: str | None = None
    refunded_at: datetime | None = None
    amount: int | None = None
    already_refunded: bool = False
    error: RefundErrorKind | None = None
    message: str = ""
    already_refunded_upstream: bool = False

    @classmethod
    def from_result(cls, result: RefundResult) -> RefundResponse:
        outcome = result.outcome
        return cls(
            engagement_id=result.engagement_id,
            refunded=result.ok,
            refund_ref=outcome.refund_ref if outcome else None,
            refunded_at=outcome.refunded_at if outcome else None,
            amount=outcome.amount if outcome else None,
            already_refunded=outcome.already_refunded if outcome else False,
            error=result.error,
            message=result.message,
            already_refunded_upstream=result.already_refunded_upstream,
        )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
