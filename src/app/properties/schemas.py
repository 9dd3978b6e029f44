"""Pydantic schemas for the property catalog and portal sync results.

Defines:
- Enums: NotificationType, SyncJobKind
- Catalog payloads: PropertyCreate/Update/Read, AgentRead, AgentUpsert
- Reference data: LocationCacheEntry
- Sync results: SyncResult, LocationBackfillResult, VerificationEligibility,
  VerificationSubmission, QualityScore
- Operator records: NotificationRead, IntegrationConfigUpdate
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class NotificationType(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class SyncJobKind(str, Enum):
    """Which orchestrator path a queued sync job runs."""

    CREATE = "create"
    UPDATE = "update"


# ── Property Schemas ────────────────────────────────────────────────────────


class PropertyBase(BaseModel):
    """Descriptive property attributes shared by create and read payloads."""

    reference: str | None = None
    property_title: str | None = None
    property_description: str | None = None
    category: str | None = None
    purpose: str | None = None
    property_type: str | None = None
    furnishing_type: str | None = None
    finishing_type: str | None = None
    project_status: str | None = None
    completion_date: str | None = None
    rental_period: str | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    area: float | None = None
    plot_area: float | None = None
    price: float | None = None
    unit_number: str | None = None
    floor_number: str | None = None
    parking_spaces: int | None = None
    available_from: str | None = None
    developer: str | None = None
    amenities: list[str] = Field(default_factory=list)
    address: str | None = None
    emirate: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    cover_photo: str | None = None
    media_images: list[str] = Field(default_factory=list)
    permit_number: str | None = None
    status: str = "AVAILABLE"
    is_active: bool = True
    client_name: str | None = None
    assigned_agent_id: str | None = None
    external_location_id: int | None = None


class PropertyCreate(PropertyBase):
    """Schema for creating a property.

    ``publish`` requests an immediate publish once the listing exists on the
    portal. Form posts send it as the strings "true"/"false", which pydantic
    coerces to bool.
    """

    publish: bool = False


class PropertyUpdate(BaseModel):
    """Partial update -- only fields explicitly set are applied."""

    reference: str | None = None
    property_title: str | None = None
    property_description: str | None = None
    category: str | None = None
    purpose: str | None = None
    property_type: str | None = None
    furnishing_type: str | None = None
    finishing_type: str | None = None
    project_status: str | None = None
    completion_date: str | None = None
    rental_period: str | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    area: float | None = None
    plot_area: float | None = None
    price: float | None = None
    unit_number: str | None = None
    floor_number: str | None = None
    parking_spaces: int | None = None
    available_from: str | None = None
    developer: str | None = None
    amenities: list[str] | None = None
    address: str | None = None
    emirate: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    cover_photo: str | None = None
    media_images: list[str] | None = None
    permit_number: str | None = None
    status: str | None = None
    is_active: bool | None = None
    client_name: str | None = None
    assigned_agent_id: str | None = None
    external_location_id: int | None = None
    publish: bool | None = None


class PropertyRead(PropertyBase):
    """Property as stored, including portal linkage state."""

    id: str
    external_listing_id: str | None = None
    external_location_path: str | None = None
    external_published: bool = False
    external_verification_status: str | None = None
    external_quality_score: float | None = None
    external_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Agent Schemas ───────────────────────────────────────────────────────────


class AgentRead(BaseModel):
    id: str
    name: str
    email: str
    phone: str | None = None
    position: str | None = None
    photo_url: str | None = None
    about: str | None = None
    languages: list[str] = Field(default_factory=list)
    is_active: bool = True
    external_user_id: str | None = None
    external_public_profile_id: str | None = None


class AgentUpsert(BaseModel):
    """Agent fields imported from a portal user record (matched by email)."""

    name: str
    email: str
    phone: str | None = None
    position: str | None = None
    photo_url: str | None = None
    about: str | None = None
    languages: list[str] = Field(default_factory=list)
    is_active: bool = True
    external_user_id: str | None = None
    external_public_profile_id: str | None = None


# ── Reference Data ──────────────────────────────────────────────────────────


class LocationCacheEntry(BaseModel):
    """Cached portal location (path ``__NOT_FOUND__`` marks a confirmed miss)."""

    id: int
    name: str
    path: str
    type: str | None = None
    lat: float | None = None
    lng: float | None = None


# ── Sync Results ────────────────────────────────────────────────────────────


class SyncResult(BaseModel):
    """Aggregate counts of a bulk export, bulk import or agent import."""

    total: int = 0
    synced: int = 0
    failed: int = 0


class LocationBackfillResult(BaseModel):
    total: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class VerificationEligibility(BaseModel):
    eligible: bool
    auto_submit: bool = False
    reason: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class VerificationSubmission(BaseModel):
    success: bool
    message: str
    submission_id: str | None = None


class QualityScore(BaseModel):
    """Listing quality score, 0-100, with the per-criterion breakdown."""

    value: int
    source: str = "local"
    breakdown: dict[str, int] = Field(default_factory=dict)


class SyncJobRead(BaseModel):
    kind: SyncJobKind
    property_id: str
    publish: bool | None = None
    attempts: int = 0
    error: str | None = None


# ── Operator Records ────────────────────────────────────────────────────────


class NotificationRead(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    is_read: bool = False
    created_at: datetime | None = None


class IntegrationConfigUpdate(BaseModel):
    """Stored Property Finder credentials. Empty values fall back to env settings."""

    api_key: str | None = None
    api_secret: str | None = None
    company_license_number: str | None = None
    is_enabled: bool = True


class PortalListingView(BaseModel):
    """Portal listing for a property plus its quality score."""

    listing: dict[str, Any] | None = None
    quality_score: QualityScore
