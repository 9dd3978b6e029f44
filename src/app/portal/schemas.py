"""Typed shapes of the Property Finder listing API.

Two listing shapes are distinguished:
- ListingPayload: what we send. ``extra="forbid"`` so a field missing from
  the mapping tables fails validation instead of vanishing.
- PortalListing: what the portal returns. ``extra="allow"`` so fields we do
  not map survive a fetch-merge-push round trip untouched.

All models serialize with camelCase aliases (``uaeEmirate``, ``assignedTo``)
and also accept snake_case field names on input.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Outbound Listing ────────────────────────────────────────────────────────


class LocalizedText(_CamelModel):
    en: str = ""
    ar: str | None = None


class ListingPrice(_CamelModel):
    """Price keyed by price type, e.g. ``{"type": "sale", "amounts": {"sale": 1.5e6}}``."""

    type: str
    amounts: dict[str, float]


class ImageRef(_CamelModel):
    url: str


class ListingImage(_CamelModel):
    original: ImageRef


class ListingMedia(_CamelModel):
    images: list[ListingImage]


class EntityRef(_CamelModel):
    id: int


class ListingCompliance(_CamelModel):
    """Advertising permit block. The portal rejects full-replace updates without it."""

    listing_advertisement_number: str
    type: str
    issuing_client_license_number: str
    user_confirmed_data_is_correct: bool = True


class ListingPayload(_CamelModel):
    model_config = ConfigDict(extra="forbid")

    category: str
    type: str
    furnishing_type: str
    reference: str
    title: LocalizedText
    description: LocalizedText
    size: float
    price: ListingPrice
    uae_emirate: str
    compliance: ListingCompliance
    location: EntityRef | None = None
    created_by: EntityRef | None = None
    assigned_to: EntityRef | None = None
    bedrooms: str | None = None
    bathrooms: str | None = None
    media: ListingMedia | None = None
    amenities: list[str] | None = None
    project_status: str | None = None
    unit_number: str | None = None
    floor_number: str | None = None
    parking_slots: int | None = None
    available_from: str | None = None
    plot_size: float | None = None
    developer: str | None = None
    finishing_type: str | None = None

    def to_api(self) -> dict[str, Any]:
        """Serialize for the listings API (camelCase, unset optionals omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Inbound Listing ─────────────────────────────────────────────────────────


class PortalListing(_CamelModel):
    """Listing as returned by ``GET /listings`` and ``GET /listings/{id}``."""

    model_config = ConfigDict(extra="allow")

    id: str
    reference: str | None = None
    category: str | None = None
    type: str | None = None
    title: LocalizedText | str | None = None
    description: LocalizedText | str | None = None
    price: dict[str, Any] | None = None
    bedrooms: str | int | None = None
    bathrooms: str | int | None = None
    size: float | None = None
    plot_size: float | None = None
    furnishing_type: str | None = None
    finishing_type: str | None = None
    uae_emirate: str | None = None
    media: dict[str, Any] | None = None
    photos: Any = None
    location: dict[str, Any] | None = None
    assigned_to: dict[str, Any] | None = None
    amenities: list[Any] | None = None
    state: dict[str, Any] | None = None
    portals: dict[str, Any] | None = None
    status: str | None = None
    offering_type: str | None = None
    project_status: str | None = None
    completion_date: str | None = None
    compliance: dict[str, Any] | None = None
    quality_score: Any = None
    verification_status: str | None = None
    unit_number: str | None = None
    floor_number: str | int | None = None
    developer: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    def to_api(self) -> dict[str, Any]:
        """Serialize back to the portal's shape, keeping unmapped fields."""
        return self.model_dump(by_alias=True, exclude_unset=True)


# ── Verification ────────────────────────────────────────────────────────────


class EligibilityResponse(_CamelModel):
    """Verification eligibility as reported by the portal.

    Errors arrive in several shapes: ``message``/``error``/``reason`` strings,
    an ``errors`` list of strings or ``{message}``/``{field, error}`` objects,
    and ``details`` as a string or ``{message}``.
    """

    model_config = ConfigDict(extra="allow")

    eligible: bool = False
    auto_submit: bool = False
    reason: str | None = None
    message: str | None = None
    error: str | None = None
    errors: list[Any] | None = None
    details: Any = None
