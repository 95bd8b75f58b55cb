"""Pydantic API schemas."""

from engagement_lifecycle.schemas.lifecycle import (
    BatchItemErrorResponse,
    BatchReportResponse,
    HealthResponse,
    RefundRequest,
    RefundResponse,
)

__all__ = [
    "BatchItemErrorResponse",
    "BatchReportResponse",
    "HealthResponse",
    "RefundRequest",
    "RefundResponse",
]
