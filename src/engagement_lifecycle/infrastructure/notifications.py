"""Database-backed notification sink.

Each notification is inserted in its own transaction, after the lifecycle
write it describes has already committed, so an outage of the
notifications table can never hold back or roll back a transition.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from engagement_lifecycle.domain.exceptions import NotificationError
from engagement_lifecycle.infrastructure.database.orm_models import Notification
from engagement_lifecycle.infrastructure.database.repositories import NotificationRepository
from engagement_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from engagement_lifecycle.domain.enums import NotificationType

logger = get_logger(__name__)


class DatabaseNotificationSink:
    """Writes notifications into the `notifications` inbox table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def notify(
        self,
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        related_engagement_id: uuid.UUID | None = None,
    ) -> None:
        async with self._session_factory() as session:
            try:
                await NotificationRepository(session).create(
                    Notification(
                        recipient_id=recipient_id,
                        type=notification_type.value,
                        title=title,
                        message=message,
                        related_engagement_id=related_engagement_id,
                        is_read=False,
                    )
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise NotificationError(
                    f"Could not record notification: {exc}", recipient_id=recipient_id
                ) from exc

        logger.debug(
            "notification.recorded",
            recipient_id=recipient_id,
            type=notification_type.value,
            engagement_id=str(related_engagement_id) if related_engagement_id else None,
        )
