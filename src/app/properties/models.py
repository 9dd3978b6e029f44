"""Catalog persistence models -- properties, agents and portal sync state.

Six SQLAlchemy models on the shared declarative Base:
- PropertyModel: Internal property listing with its portal linkage columns
- AgentModel: Salesperson with portal user/profile linkage
- LocationCacheModel: Portal location id -> resolved display path (never expires)
- AmenityModel: Amenity vocabulary mirrored from imported listings
- NotificationModel: Observational sync notifications for operators
- IntegrationConfigModel: Stored portal credentials keyed by provider
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import Base


class PropertyModel(Base):
    """Internal property record.

    The ``external_*`` columns hold the portal linkage. ``external_listing_id``
    is written once by create-sync and never replaced afterwards.
    """

    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    property_title: Mapped[str | None] = mapped_column(String(300), nullable=True)
    property_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(20), nullable=True)
    property_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    furnishing_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    finishing_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    project_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    completion_date: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rental_period: Mapped[str | None] = mapped_column(String(20), nullable=True)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    area: Mapped[float | None] = mapped_column(Float, nullable=True)
    plot_area: Mapped[float | None] = mapped_column(Float, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    floor_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    parking_spaces: Mapped[int | None] = mapped_column(Integer, nullable=True)
    available_from: Mapped[str | None] = mapped_column(String(50), nullable=True)
    developer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    amenities: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    emirate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    cover_photo: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    media_images: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    permit_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="AVAILABLE", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    client_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    assigned_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )

    # Portal linkage
    external_listing_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True
    )
    external_location_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_location_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    external_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    external_verification_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    external_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class AgentModel(Base):
    """Salesperson. Listings are attributed on the portal by public profile id."""

    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    position: Mapped[str | None] = mapped_column(String(100), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    about: Mapped[str | None] = mapped_column(Text, nullable=True)
    languages: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    external_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_public_profile_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class LocationCacheModel(Base):
    """Resolved portal location. Rows are immutable once written."""

    __tablename__ = "location_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class AmenityModel(Base):
    __tablename__ = "amenities"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )


class IntegrationConfigModel(Base):
    """Stored credentials for an external provider (e.g. ``property_finder``)."""

    __tablename__ = "integration_configs"

    provider: Mapped[str] = mapped_column(String(50), primary_key=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    credentials: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )
