"""FastAPI application entry point for the engagement lifecycle service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode).
    2. Running: Serve the scheduler and admin routes on a single Uvicorn process.
    3. Shutdown: Close database and Redis connections gracefully.

Run with:
    uvicorn engagement_lifecycle.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from engagement_lifecycle.config import get_settings
from engagement_lifecycle.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        payment_simulate=settings.payment_simulate,
    )
    if not settings.cron_secret:
        logger.warning("app.cron_secret_unset", effect="scheduler calls will be rejected")

    # 2. Initialize database
    from engagement_lifecycle.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (optional: only guards against overlapping scans)
    from engagement_lifecycle.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Engagement Lifecycle",
        description=(
            "Time-driven auto-resolution of engagements: deadline warnings, "
            "auto-approval and refunds."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from engagement_lifecycle.api.middleware import setup_middleware

    setup_middleware(app)

    # --- Routes ---
    from engagement_lifecycle.api.routes.cron import router as cron_router
    from engagement_lifecycle.api.routes.health import router as health_router
    from engagement_lifecycle.api.routes.refunds import router as refunds_router

    app.include_router(health_router)
    app.include_router(cron_router)
    app.include_router(refunds_router)

    return app


# The app instance used by Uvicorn
app = create_app()
