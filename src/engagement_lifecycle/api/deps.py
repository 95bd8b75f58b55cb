"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the engagement
store, notification sink, payment gateway, deadline policy and the
scheduler's shared-secret check.
"""

from __future__ import annotations

import hmac
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from engagement_lifecycle.config import Settings, get_settings
from engagement_lifecycle.domain.deadlines import DeadlinePolicy
from engagement_lifecycle.domain.ports import (
    EngagementStore,
    NotificationSink,
    PaymentGateway,
)
from engagement_lifecycle.infrastructure.database.engine import get_session_factory
from engagement_lifecycle.infrastructure.database.store import SqlAlchemyEngagementStore
from engagement_lifecycle.infrastructure.notifications import DatabaseNotificationSink
from engagement_lifecycle.infrastructure.payment_gateway import build_payment_gateway
from engagement_lifecycle.logging_config import get_logger
from engagement_lifecycle.services.deadline_scanner import ScanDependencies
from engagement_lifecycle.services.refund_orchestrator import RefundOrchestrator

logger = get_logger(__name__)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_store() -> EngagementStore:
    """Provide the SQLAlchemy-backed engagement store."""
    return SqlAlchemyEngagementStore(get_session_factory())


def get_notifier() -> NotificationSink:
    """Provide the database notification sink."""
    return DatabaseNotificationSink(get_session_factory())


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Provide the payment gateway (one instance per process)."""
    return build_payment_gateway(get_settings())


def get_deadline_policy(settings: Settings = Depends(get_app_settings)) -> DeadlinePolicy:
    return DeadlinePolicy.from_settings(settings)


def get_scan_dependencies(
    store: EngagementStore = Depends(get_store),
    notifier: NotificationSink = Depends(get_notifier),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    policy: DeadlinePolicy = Depends(get_deadline_policy),
    settings: Settings = Depends(get_app_settings),
) -> ScanDependencies:
    """Bundle the collaborators of one scan cycle."""
    return ScanDependencies(
        store=store,
        notifier=notifier,
        gateway=gateway,
        policy=policy,
        page_size=settings.scan_page_size,
        refund_reason_code=settings.refund_reason_code,
    )


def get_refund_orchestrator(
    store: EngagementStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_app_settings),
) -> RefundOrchestrator:
    return RefundOrchestrator(store, gateway, reason_code=settings.refund_reason_code)


def verify_internal_token(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>`.

    Uses hmac.compare_digest to prevent timing attacks. An unset secret
    rejects every caller.
    """
    expected = settings.cron_secret
    scheme, _, provided = (authorization or "").partition(" ")
    if (
        not expected
        or scheme.lower() != "bearer"
        or not hmac.compare_digest(provided.strip().encode("utf-8"), expected.encode("utf-8"))
    ):
        if not expected:
            logger.warning("auth.cron_secret_unset")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing scheduler credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
