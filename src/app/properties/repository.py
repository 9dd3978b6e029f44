"""Catalog repositories -- async CRUD for properties, agents and sync state.

Provides repositories with the session_factory callable pattern:
- PropertyRepository: properties and agents, plus the bulk lookup maps the
  import path pre-loads (listing id -> property id, profile/user id -> agent id)
- LocationCacheRepository: immutable portal location rows (insert races ignored)
- NotificationRepository: operator notifications
- IntegrationConfigRepository: stored provider credentials

Pydantic schemas are returned to callers; SQLAlchemy models never leave
this module.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.properties.models import (
    AgentModel,
    AmenityModel,
    IntegrationConfigModel,
    LocationCacheModel,
    NotificationModel,
    PropertyModel,
)
from src.app.properties.schemas import (
    AgentRead,
    AgentUpsert,
    LocationCacheEntry,
    NotificationRead,
    NotificationType,
    PropertyRead,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]

# Columns a caller may write through create_property / update_property
_WRITABLE_PROPERTY_FIELDS = frozenset(
    c for c in PropertyRead.model_fields if c not in {"id", "created_at", "updated_at"}
)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_property(model: PropertyModel) -> PropertyRead:
    """Convert PropertyModel to PropertyRead schema."""
    return PropertyRead(
        id=str(model.id),
        reference=model.reference,
        property_title=model.property_title,
        property_description=model.property_description,
        category=model.category,
        purpose=model.purpose,
        property_type=model.property_type,
        furnishing_type=model.furnishing_type,
        finishing_type=model.finishing_type,
        project_status=model.project_status,
        completion_date=model.completion_date,
        rental_period=model.rental_period,
        bedrooms=model.bedrooms,
        bathrooms=model.bathrooms,
        area=model.area,
        plot_area=model.plot_area,
        price=model.price,
        unit_number=model.unit_number,
        floor_number=model.floor_number,
        parking_spaces=model.parking_spaces,
        available_from=model.available_from,
        developer=model.developer,
        amenities=list(model.amenities or []),
        address=model.address,
        emirate=model.emirate,
        latitude=model.latitude,
        longitude=model.longitude,
        cover_photo=model.cover_photo,
        media_images=list(model.media_images or []),
        permit_number=model.permit_number,
        status=model.status,
        is_active=model.is_active,
        client_name=model.client_name,
        assigned_agent_id=str(model.assigned_agent_id) if model.assigned_agent_id else None,
        external_listing_id=model.external_listing_id,
        external_location_id=model.external_location_id,
        external_location_path=model.external_location_path,
        external_published=model.external_published,
        external_verification_status=model.external_verification_status,
        external_quality_score=model.external_quality_score,
        external_synced_at=model.external_synced_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_agent(model: AgentModel) -> AgentRead:
    """Convert AgentModel to AgentRead schema."""
    return AgentRead(
        id=str(model.id),
        name=model.name,
        email=model.email,
        phone=model.phone,
        position=model.position,
        photo_url=model.photo_url,
        about=model.about,
        languages=list(model.languages or []),
        is_active=model.is_active,
        external_user_id=model.external_user_id,
        external_public_profile_id=model.external_public_profile_id,
    )


def _model_to_notification(model: NotificationModel) -> NotificationRead:
    return NotificationRead(
        id=str(model.id),
        type=NotificationType(model.type),
        title=model.title,
        message=model.message,
        is_read=model.is_read,
        created_at=model.created_at,
    )


def _property_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Filter to writable columns and coerce the agent id to a UUID."""
    values = {k: v for k, v in fields.items() if k in _WRITABLE_PROPERTY_FIELDS}
    if "assigned_agent_id" in values:
        agent_id = values["assigned_agent_id"]
        values["assigned_agent_id"] = uuid.UUID(agent_id) if agent_id else None
    return values


# ── Property Repository ─────────────────────────────────────────────────────


class PropertyRepository:
    """Async CRUD for properties and agents.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # ── Properties ──────────────────────────────────────────────────────────

    async def create_property(self, fields: dict[str, Any]) -> PropertyRead:
        """Insert a property from a dict of column values.

        Args:
            fields: Column values; unknown keys are ignored.

        Returns:
            PropertyRead with all persisted fields.
        """
        async for session in self._session_factory():
            model = PropertyModel(**_property_columns(fields))
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_property(model)

    async def get_property(self, property_id: str) -> PropertyRead | None:
        """Get a property by ID, or None when it does not exist."""
        async for session in self._session_factory():
            stmt = select(PropertyModel).where(PropertyModel.id == uuid.UUID(property_id))
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_property(model)

    async def update_property(
        self, property_id: str, fields: dict[str, Any]
    ) -> PropertyRead | None:
        """Apply column values to a property.

        ``external_listing_id`` is never replaced here once set; use
        :meth:`set_listing_id_if_absent` to link a listing.

        Returns:
            The updated PropertyRead, or None if the property does not exist.
        """
        values = _property_columns(fields)
        async for session in self._session_factory():
            stmt = select(PropertyModel).where(PropertyModel.id == uuid.UUID(property_id))
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in values.items():
                if key == "external_listing_id" and model.external_listing_id:
                    continue
                setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_property(model)

    async def set_listing_id_if_absent(
        self, property_id: str, listing_id: str, synced_at: datetime
    ) -> bool:
        """Link a portal listing to a property that has none yet.

        Returns:
            True when the id was written, False when one was already set.
        """
        async for session in self._session_factory():
            stmt = (
                update(PropertyModel)
                .where(
                    PropertyModel.id == uuid.UUID(property_id),
                    PropertyModel.external_listing_id.is_(None),
                )
                .values(external_listing_id=listing_id, external_synced_at=synced_at)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def delete_property(self, property_id: str) -> bool:
        """Delete a property. The portal listing is left untouched."""
        async for session in self._session_factory():
            stmt = delete(PropertyModel).where(PropertyModel.id == uuid.UUID(property_id))
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def list_properties(
        self, active_only: bool = False, limit: int = 100, offset: int = 0
    ) -> list[PropertyRead]:
        async for session in self._session_factory():
            stmt = select(PropertyModel).order_by(PropertyModel.created_at.desc())
            if active_only:
                stmt = stmt.where(PropertyModel.is_active.is_(True))
            stmt = stmt.limit(limit).offset(offset)
            result = await session.execute(stmt)
            return [_model_to_property(m) for m in result.scalars().all()]

    async def list_active_property_ids(self) -> list[str]:
        """IDs of every active property, oldest first."""
        async for session in self._session_factory():
            stmt = (
                select(PropertyModel.id)
                .where(PropertyModel.is_active.is_(True))
                .order_by(PropertyModel.created_at)
            )
            result = await session.execute(stmt)
            return [str(pid) for pid in result.scalars().all()]

    async def listing_id_map(self) -> dict[str, str]:
        """Map every linked portal listing id to its property id."""
        async for session in self._session_factory():
            stmt = select(PropertyModel.external_listing_id, PropertyModel.id).where(
                PropertyModel.external_listing_id.is_not(None)
            )
            result = await session.execute(stmt)
            return {listing_id: str(pid) for listing_id, pid in result.all()}

    async def list_missing_location_path(self) -> list[PropertyRead]:
        """Properties with a portal location id but no cached display path."""
        async for session in self._session_factory():
            stmt = select(PropertyModel).where(
                PropertyModel.external_location_id.is_not(None),
                PropertyModel.external_location_path.is_(None),
            )
            result = await session.execute(stmt)
            return [_model_to_property(m) for m in result.scalars().all()]

    async def list_missing_location_id(self) -> list[PropertyRead]:
        """Synced properties whose portal location id was never stored."""
        async for session in self._session_factory():
            stmt = select(PropertyModel).where(
                PropertyModel.external_listing_id.is_not(None),
                PropertyModel.external_location_id.is_(None),
            )
            result = await session.execute(stmt)
            return [_model_to_property(m) for m in result.scalars().all()]

    # ── Agents ──────────────────────────────────────────────────────────────

    async def get_agent(self, agent_id: str) -> AgentRead | None:
        async for session in self._session_factory():
            stmt = select(AgentModel).where(AgentModel.id == uuid.UUID(agent_id))
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_agent(model)

    async def list_agents(self) -> list[AgentRead]:
        async for session in self._session_factory():
            result = await session.execute(select(AgentModel).order_by(AgentModel.name))
            return [_model_to_agent(m) for m in result.scalars().all()]

    async def agent_lookup_maps(self) -> tuple[dict[str, str], dict[str, str]]:
        """Build agent lookups keyed by portal public profile id and user id.

        Returns:
            Tuple of (profile_id -> agent id, user_id -> agent id).
        """
        async for session in self._session_factory():
            stmt = select(
                AgentModel.id,
                AgentModel.external_public_profile_id,
                AgentModel.external_user_id,
            )
            result = await session.execute(stmt)
            by_profile: dict[str, str] = {}
            by_user: dict[str, str] = {}
            for agent_id, profile_id, user_id in result.all():
                if profile_id:
                    by_profile[str(profile_id)] = str(agent_id)
                if user_id:
                    by_user[str(user_id)] = str(agent_id)
            return by_profile, by_user

    async def upsert_agent_by_email(self, data: AgentUpsert) -> AgentRead:
        """Create or update the agent whose email matches ``data.email``."""
        async for session in self._session_factory():
            stmt = select(AgentModel).where(AgentModel.email == data.email)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                model = AgentModel(**data.model_dump())
                session.add(model)
            else:
                for key, value in data.model_dump().items():
                    setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_agent(model)

    # ── Amenities ───────────────────────────────────────────────────────────

    async def ensure_amenities(self, names: list[str]) -> int:
        """Insert amenity names that are not stored yet.

        Returns:
            Number of rows inserted.
        """
        if not names:
            return 0
        async for session in self._session_factory():
            stmt = (
                insert(AmenityModel)
                .values([{"name": n} for n in names])
                .on_conflict_do_nothing(index_elements=["name"])
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0


# ── Location Cache Repository ───────────────────────────────────────────────


class LocationCacheRepository:
    """Persisted portal location lookups.

    Rows are immutable; concurrent inserts of the same id keep the first
    row and report the later ones as not inserted.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, location_id: int) -> LocationCacheEntry | None:
        async for session in self._session_factory():
            model = await session.get(LocationCacheModel, location_id)
            if model is None:
                return None
            return LocationCacheEntry(
                id=model.id,
                name=model.name,
                path=model.path,
                type=model.type,
                lat=model.lat,
                lng=model.lng,
            )

    async def add(self, entry: LocationCacheEntry) -> bool:
        """Insert a cache row.

        Returns:
            True if inserted, False if a row for this id already existed.
        """
        async for session in self._session_factory():
            stmt = (
                insert(LocationCacheModel)
                .values(**entry.model_dump())
                .on_conflict_do_nothing(index_elements=["id"])
            )
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)

    async def list_all(self) -> list[LocationCacheEntry]:
        async for session in self._session_factory():
            result = await session.execute(
                select(LocationCacheModel).order_by(LocationCacheModel.id)
            )
            return [
                LocationCacheEntry(
                    id=m.id, name=m.name, path=m.path, type=m.type, lat=m.lat, lng=m.lng
                )
                for m in result.scalars().all()
            ]

    async def clear(self) -> int:
        async for session in self._session_factory():
            result = await session.execute(delete(LocationCacheModel))
            await session.commit()
            return result.rowcount or 0


# ── Notification Repository ─────────────────────────────────────────────────


class NotificationRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(
        self, type: NotificationType, title: str, message: str
    ) -> NotificationRead:
        async for session in self._session_factory():
            model = NotificationModel(type=type.value, title=title, message=message)
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_notification(model)

    async def list_recent(self, limit: int = 10) -> list[NotificationRead]:
        async for session in self._session_factory():
            stmt = (
                select(NotificationModel)
                .order_by(NotificationModel.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_notification(m) for m in result.scalars().all()]

    async def count_unread(self) -> int:
        async for session in self._session_factory():
            stmt = select(func.count()).select_from(NotificationModel).where(
                NotificationModel.is_read.is_(False)
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def mark_all_read(self) -> int:
        async for session in self._session_factory():
            stmt = (
                update(NotificationModel)
                .where(NotificationModel.is_read.is_(False))
                .values(is_read=True)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0


# ── Integration Config Repository ───────────────────────────────────────────


class IntegrationConfigRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, provider: str) -> dict[str, Any] | None:
        """Return stored credentials for an enabled provider, else None."""
        async for session in self._session_factory():
            model = await session.get(IntegrationConfigModel, provider)
            if model is None or not model.is_enabled:
                return None
            return dict(model.credentials or {})

    async def save(
        self, provider: str, credentials: dict[str, Any], is_enabled: bool = True
    ) -> None:
        async for session in self._session_factory():
            model = await session.get(IntegrationConfigModel, provider)
            if model is None:
                model = IntegrationConfigModel(provider=provider)
                session.add(model)
            model.credentials = credentials
            model.is_enabled = is_enabled
            await session.commit()
            logger.info("integration_config.saved", provider=provider, is_enabled=is_enabled)
