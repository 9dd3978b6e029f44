"""REST API endpoints for the property catalog and per-property portal sync.

Catalog writes return as soon as the property is stored; the portal side
runs on the sync job queue. The portal endpoints (sync, publish, unpublish,
verification, details) run synchronously and answer with the portal's
status and body on failure.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from src.app.api.deps import get_property_service, get_sync_engine, sync_error_to_http
from src.app.portal.errors import PortalSyncError
from src.app.properties.schemas import (
    PortalListingView,
    PropertyCreate,
    PropertyRead,
    PropertyUpdate,
    VerificationEligibility,
    VerificationSubmission,
)

router = APIRouter(prefix="/properties", tags=["properties"])


class SyncRequest(BaseModel):
    publish: bool | None = None


# ── Catalog Endpoints ────────────────────────────────────────────────────────


@router.post("", response_model=PropertyRead, status_code=201)
async def create_property(
    body: PropertyCreate,
    service: Any = Depends(get_property_service),
) -> PropertyRead:
    """Create a property; listing creation on the portal is queued."""
    return await service.create(body)


@router.get("", response_model=list[PropertyRead])
async def list_properties(
    active_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: Any = Depends(get_property_service),
) -> list[PropertyRead]:
    return await service.list(active_only=active_only, limit=limit, offset=offset)


@router.get("/{property_id}", response_model=PropertyRead)
async def get_property(
    property_id: UUID,
    service: Any = Depends(get_property_service),
) -> PropertyRead:
    try:
        return await service.get(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.patch("/{property_id}", response_model=PropertyRead)
async def update_property(
    property_id: UUID,
    body: PropertyUpdate,
    service: Any = Depends(get_property_service),
) -> PropertyRead:
    """Update a property; the portal update-sync is queued."""
    try:
        return await service.update(str(property_id), body)
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.delete("/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_property(
    property_id: UUID,
    service: Any = Depends(get_property_service),
) -> None:
    try:
        await service.delete(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


# ── Portal Sync Endpoints ────────────────────────────────────────────────────


@router.post("/{property_id}/sync", response_model=PropertyRead)
async def sync_property(
    property_id: UUID,
    body: SyncRequest | None = None,
    engine: Any = Depends(get_sync_engine),
) -> PropertyRead:
    """Push the property to Property Finder now (create or update)."""
    try:
        return await engine.update_sync(
            str(property_id), publish=body.publish if body else None
        )
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.post("/{property_id}/publish", response_model=PropertyRead)
async def publish_property(
    property_id: UUID,
    engine: Any = Depends(get_sync_engine),
) -> PropertyRead:
    try:
        return await engine.publish(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.post("/{property_id}/unpublish", response_model=PropertyRead)
async def unpublish_property(
    property_id: UUID,
    engine: Any = Depends(get_sync_engine),
) -> PropertyRead:
    try:
        return await engine.unpublish(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.post("/{property_id}/sync-details", response_model=PropertyRead)
async def sync_property_details(
    property_id: UUID,
    engine: Any = Depends(get_sync_engine),
) -> PropertyRead:
    """Pull location, quality score and verification status from the portal."""
    try:
        return await engine.sync_details_from_portal(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.get("/{property_id}/portal-listing", response_model=PortalListingView)
async def get_portal_listing(
    property_id: UUID,
    engine: Any = Depends(get_sync_engine),
) -> PortalListingView:
    try:
        return await engine.get_portal_listing(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


# ── Verification Endpoints ───────────────────────────────────────────────────


@router.get("/{property_id}/verification/eligibility", response_model=VerificationEligibility)
async def check_eligibility(
    property_id: UUID,
    engine: Any = Depends(get_sync_engine),
) -> VerificationEligibility:
    try:
        return await engine.check_verification_eligibility(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.post("/{property_id}/verification", response_model=VerificationSubmission)
async def submit_verification(
    property_id: UUID,
    engine: Any = Depends(get_sync_engine),
) -> VerificationSubmission:
    try:
        return await engine.submit_verification(str(property_id))
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc
