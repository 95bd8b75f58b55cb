"""Database infrastructure: engine, ORM models, repositories and the store adapter."""

from engagement_lifecycle.infrastructure.database.engine import (
    close_db,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)
from engagement_lifecycle.infrastructure.database.orm_models import (
    Base,
    CancellationRequest,
    Delivery,
    Engagement,
    EngagementEvent,
    Notification,
)
from engagement_lifecycle.infrastructure.database.store import SqlAlchemyEngagementStore

__all__ = [
    "Base",
    "CancellationRequest",
    "Delivery",
    "Engagement",
    "EngagementEvent",
    "Notification",
    "SqlAlchemyEngagementStore",
    "close_db",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
]
