"""Property write service.

Persists catalog writes and hands the portal side off to the sync job
queue, so API responses never wait on Property Finder.
"""

from __future__ import annotations

import structlog

from src.app.portal.errors import PropertyNotFoundError
from src.app.portal.jobs import SyncJobQueue
from src.app.properties.repository import PropertyRepository
from src.app.properties.schemas import (
    PropertyCreate,
    PropertyRead,
    PropertyUpdate,
    SyncJobKind,
)

logger = structlog.get_logger(__name__)


class PropertyService:
    def __init__(self, repository: PropertyRepository, jobs: SyncJobQueue) -> None:
        self._repository = repository
        self._jobs = jobs

    async def create(self, data: PropertyCreate) -> PropertyRead:
        """Store a new property and queue its listing creation."""
        fields = data.model_dump(exclude={"publish"})
        prop = await self._repository.create_property(fields)
        self._jobs.enqueue(SyncJobKind.CREATE, prop.id, publish=data.publish)
        logger.info("property_created", property_id=prop.id, publish=data.publish)
        return prop

    async def update(self, property_id: str, data: PropertyUpdate) -> PropertyRead:
        """Apply a partial update and queue the portal update-sync."""
        fields = data.model_dump(exclude_unset=True, exclude={"publish"})
        prop = await self._repository.update_property(property_id, fields)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        self._jobs.enqueue(SyncJobKind.UPDATE, prop.id, publish=data.publish)
        logger.info("property_updated", property_id=prop.id, fields=sorted(fields))
        return prop

    async def get(self, property_id: str) -> PropertyRead:
        prop = await self._repository.get_property(property_id)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop

    async def list(
        self, active_only: bool = False, limit: int = 50, offset: int = 0
    ) -> list[PropertyRead]:
        return await self._repository.list_properties(
            active_only=active_only, limit=limit, offset=offset
        )

    async def delete(self, property_id: str) -> None:
        if not await self._repository.delete_property(property_id):
            raise PropertyNotFoundError(property_id)
        logger.info("property_deleted", property_id=property_id)
