"""REST API endpoints for bulk portal sync and portal reference data.

Covers bulk export/import, agent import, location search and cache
maintenance, operator notifications, the stored integration credentials
and the sync job dead letters.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.app.api.deps import (
    get_credential_provider,
    get_integration_repository,
    get_location_cache,
    get_notification_service,
    get_sync_engine,
    get_sync_jobs,
    sync_error_to_http,
)
from src.app.portal.credentials import PROVIDER
from src.app.portal.errors import PortalSyncError
from src.app.properties.schemas import (
    IntegrationConfigUpdate,
    LocationBackfillResult,
    LocationCacheEntry,
    NotificationRead,
    SyncJobRead,
    SyncResult,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/portal", tags=["portal"])


class UnreadCountResponse(BaseModel):
    unread: int


class ClearedResponse(BaseModel):
    removed: int


# ── Bulk Sync ────────────────────────────────────────────────────────────────


@router.post("/sync/export", response_model=SyncResult)
async def sync_all_to_portal(engine: Any = Depends(get_sync_engine)) -> SyncResult:
    """Update-sync every active property to Property Finder."""
    return await engine.sync_all_to_portal()


@router.post("/sync/import", response_model=SyncResult)
async def sync_from_portal(engine: Any = Depends(get_sync_engine)) -> SyncResult:
    """Import every Property Finder listing into the catalog."""
    return await engine.sync_from_portal()


@router.post("/sync/agents", response_model=SyncResult)
async def sync_agents(engine: Any = Depends(get_sync_engine)) -> SyncResult:
    return await engine.sync_agents_from_portal()


@router.get("/sync/dead-letters", response_model=list[SyncJobRead])
async def list_dead_letters(jobs: Any = Depends(get_sync_jobs)) -> list[SyncJobRead]:
    return [job.to_read() for job in jobs.dead_letters]


# ── Locations ────────────────────────────────────────────────────────────────


@router.get("/locations", response_model=list[dict[str, Any]])
async def search_locations(
    search: str = Query(default=""),
    engine: Any = Depends(get_sync_engine),
) -> list[dict[str, Any]]:
    try:
        return await engine.search_locations(search)
    except PortalSyncError as exc:
        raise sync_error_to_http(exc) from exc


@router.get("/locations/cache", response_model=list[LocationCacheEntry])
async def list_location_cache(cache: Any = Depends(get_location_cache)) -> list[LocationCacheEntry]:
    return await cache.list_cached()


@router.delete("/locations/cache", response_model=ClearedResponse)
async def clear_location_cache(cache: Any = Depends(get_location_cache)) -> ClearedResponse:
    return ClearedResponse(removed=await cache.clear())


@router.post("/locations/backfill", response_model=LocationBackfillResult)
async def backfill_location_paths(
    engine: Any = Depends(get_sync_engine),
) -> LocationBackfillResult:
    """Resolve paths for properties that have a location id but no path."""
    return await engine.backfill_location_paths()


@router.post("/locations/fetch-missing", response_model=LocationBackfillResult)
async def fetch_missing_locations(
    engine: Any = Depends(get_sync_engine),
) -> LocationBackfillResult:
    """Pull location ids from the portal for synced properties without one."""
    return await engine.fetch_missing_location_paths()


# ── Notifications ────────────────────────────────────────────────────────────


@router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(
    limit: int = Query(default=10, ge=1, le=100),
    notifications: Any = Depends(get_notification_service),
) -> list[NotificationRead]:
    return await notifications.list_recent(limit=limit)


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    notifications: Any = Depends(get_notification_service),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread=await notifications.count_unread())


@router.post("/notifications/mark-read", response_model=UnreadCountResponse)
async def mark_all_read(
    notifications: Any = Depends(get_notification_service),
) -> UnreadCountResponse:
    await notifications.mark_all_read()
    return UnreadCountResponse(unread=0)


# ── Integration Config ───────────────────────────────────────────────────────


@router.put("/integration", status_code=204)
async def update_integration(
    body: IntegrationConfigUpdate,
    request: Request,
    repository: Any = Depends(get_integration_repository),
    credentials: Any = Depends(get_credential_provider),
) -> None:
    """Store Property Finder credentials; the next portal call picks them up."""
    stored = {
        "apiKey": body.api_key,
        "apiSecret": body.api_secret,
        "companyOrn": body.company_license_number,
    }
    await repository.save(
        PROVIDER,
        {k: v for k, v in stored.items() if v},
        is_enabled=body.is_enabled,
    )
    credentials.invalidate()
    client = getattr(request.app.state, "portal_client", None)
    if client is not None:
        client.invalidate_token()
    logger.info("integration_updated", provider=PROVIDER, is_enabled=body.is_enabled)
