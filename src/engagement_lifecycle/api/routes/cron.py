"""Scheduler-facing routes.

Routes:
    POST   /api/v1/cron/deadline-scan   Run one deadline scan cycle

The external scheduler calls this at a fixed cadence with
`Authorization: Bearer <CRON_SECRET>`. A completed cycle always answers
200, whatever per-item errors it collected.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from engagement_lifecycle.api.deps import (
    get_app_settings,
    get_scan_dependencies,
    verify_internal_token,
)
from engagement_lifecycle.config import Settings
from engagement_lifecycle.infrastructure.redis_client import (
    get_redis,
    redis_available,
    scan_lock,
)
from engagement_lifecycle.logging_config import get_logger
from engagement_lifecycle.schemas.lifecycle import BatchReportResponse
from engagement_lifecycle.services.deadline_scanner import ScanDependencies, run_scan_cycle

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

router = APIRouter(
    prefix="/api/v1/cron",
    tags=["Scheduler"],
    dependencies=[Depends(verify_internal_token)],
)
logger = get_logger(__name__)


@asynccontextmanager
async def _cycle_lock(settings: Settings) -> AsyncIterator[None]:
    if not redis_available():
        logger.warning("scan.lock_unavailable", reason="redis not initialized")
        yield
        return
    async with scan_lock(
        get_redis(), settings.scan_lock_key, settings.scan_cycle_timeout_seconds
    ):
        yield


@router.post(
    "/deadline-scan",
    response_model=BatchReportResponse,
    summary="Run one deadline scan cycle",
    responses={
        401: {"description": "Bad or missing scheduler credentials"},
        409: {"description": "Another scan cycle is still running"},
        500: {"description": "The cycle itself failed or ran out of time"},
    },
)
async def deadline_scan(
    deps: ScanDependencies = Depends(get_scan_dependencies),
    settings: Settings = Depends(get_app_settings),
) -> BatchReportResponse | JSONResponse:
    """Send due warnings and apply due auto-actions."""
    now = datetime.now(UTC)

    async with _cycle_lock(settings):
        try:
            async with asyncio.timeout(settings.scan_cycle_timeout_seconds):
                report = await run_scan_cycle(now, deps)
        except TimeoutError:
            logger.error(
                "scan.cycle_timed_out",
                timeout_seconds=settings.scan_cycle_timeout_seconds,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "SCAN_TIMEOUT",
                    "message": (
                        f"Scan cycle exceeded {settings.scan_cycle_timeout_seconds}s; "
                        "remaining candidates are picked up by the next cycle"
                    ),
                },
            )

    return BatchReportResponse.from_report(report)
