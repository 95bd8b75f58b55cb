"""Admin refund route.

Routes:
    POST   /api/v1/engagements/{id}/refund   Refund a cancelled engagement

Status codes:
    200  refunded, already refunded, or nothing to refund (error=no_payment)
    404  unknown engagement
    409  engagement is not cancelled
    502  the payment gateway failed; nothing was recorded
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status

from engagement_lifecycle.api.deps import get_refund_orchestrator, verify_internal_token
from engagement_lifecycle.domain.enums import RefundErrorKind
from engagement_lifecycle.logging_config import get_logger
from engagement_lifecycle.schemas.lifecycle import RefundRequest, RefundResponse
from engagement_lifecycle.services.refund_orchestrator import RefundOrchestrator

router = APIRouter(
    prefix="/api/v1/engagements",
    tags=["Refunds"],
    dependencies=[Depends(verify_internal_token)],
)
logger = get_logger(__name__)

_ERROR_STATUS = {
    RefundErrorKind.NO_PAYMENT: status.HTTP_200_OK,
    RefundErrorKind.NOT_CANCELLED: status.HTTP_409_CONFLICT,
    RefundErrorKind.GATEWAY_FAILURE: status.HTTP_502_BAD_GATEWAY,
}


@router.post(
    "/{engagement_id}/refund",
    response_model=RefundResponse,
    summary="Refund a cancelled engagement",
)
async def refund_engagement(
    engagement_id: uuid.UUID,
    request: RefundRequest,
    response: Response,
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator),
) -> RefundResponse:
    """Issue (or look up) the full refund for a cancelled engagement."""
    result = await orchestrator.refund(engagement_id, request.reason)
    if result.error is not None:
        response.status_code = _ERROR_STATUS[result.error]
    logger.info(
        "refund.api_completed",
        engagement_id=str(engagement_id),
        refunded=result.ok,
        error=result.error.value if result.error else None,
    )
    return RefundResponse.from_result(result)
