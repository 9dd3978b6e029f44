"""FastAPI dependencies for the services wired onto app.state at startup.

Each getter raises 503 when its service failed to initialize, so the rest
of the API keeps serving.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.app.portal.errors import PortalSyncError


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_property_service(request: Request) -> Any:
    return _from_state(request, "property_service", "Property catalog")


def get_sync_engine(request: Request) -> Any:
    return _from_state(request, "sync_engine", "Portal sync")


def get_location_cache(request: Request) -> Any:
    return _from_state(request, "location_cache", "Location cache")


def get_notification_service(request: Request) -> Any:
    return _from_state(request, "notification_service", "Notifications")


def get_sync_jobs(request: Request) -> Any:
    return _from_state(request, "sync_jobs", "Sync job queue")


def get_credential_provider(request: Request) -> Any:
    return _from_state(request, "credential_provider", "Portal credentials")


def get_integration_repository(request: Request) -> Any:
    return _from_state(request, "integration_repository", "Integration config")


def sync_error_to_http(exc: PortalSyncError) -> HTTPException:
    """Map a sync failure to the portal's status and body."""
    return HTTPException(
        status_code=exc.status_code,
        detail={"message": exc.message, "body": exc.body},
    )
