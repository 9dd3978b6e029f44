"""Operator notification sink for sync side effects.

Writes are fire-and-forget: a failure to record a notification is logged and
never propagates into the sync operation that raised it.
"""

from __future__ import annotations

import structlog
from sqlalchemy.exc import SQLAlchemyError

from src.app.properties.repository import NotificationRepository
from src.app.properties.schemas import NotificationRead, NotificationType

logger = structlog.get_logger(__name__)


class NotificationService:
    def __init__(self, repository: NotificationRepository) -> None:
        self._repository = repository

    async def notify(self, type: NotificationType, title: str, message: str) -> None:
        try:
            await self._repository.create(type, title, message)
        except SQLAlchemyError as exc:
            logger.warning(
                "notifications.write_failed",
                type=type.value,
                title=title,
                error=str(exc),
            )

    async def list_recent(self, limit: int = 10) -> list[NotificationRead]:
        return await self._repository.list_recent(limit=limit)

    async def count_unread(self) -> int:
        return await self._repository.count_unread()

    async def mark_all_read(self) -> int:
        return await self._repository.mark_all_read()
