"""Property Finder portal integration.

Provides the portal facade (ListingPortal ABC and the PropertyFinderClient
HTTP implementation), the bidirectional listing mapper, the location
reference cache, the sync engine, the per-property job queue and the
periodic scheduler.
"""

from src.app.portal.adapter import ListingPortal
from src.app.portal.client import PropertyFinderClient
from src.app.portal.errors import (
    ListingNotFoundError,
    PortalAPIError,
    PortalSyncError,
    PropertyNotFoundError,
)
from src.app.portal.jobs import SyncJobQueue
from src.app.portal.locations import LocationCache
from src.app.portal.scheduler import PortalSyncScheduler
from src.app.portal.sync import PortalSyncEngine

__all__ = [
    "ListingNotFoundError",
    "ListingPortal",
    "LocationCache",
    "PortalAPIError",
    "PortalSyncEngine",
    "PortalSyncError",
    "PortalSyncScheduler",
    "PropertyFinderClient",
    "PropertyNotFoundError",
    "SyncJobQueue",
]
