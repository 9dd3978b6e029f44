"""Listing portal abstract base class -- the capability surface the sync engine needs.

PropertyFinderClient implements it over HTTP; tests substitute in-memory
fakes. All payloads are in the portal's JSON shape (camelCase dicts).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ListingPortal(ABC):
    """Abstract interface for an external listing portal.

    Methods:
        search_locations: Free-text location search.
        get_location: Location detail by id, None when the portal has no such id.
        create_listing / update_listing: Create, or fully replace, a listing.
        get_listing: Listing by id, None when not found.
        get_listings: One page of listings with pagination metadata.
        publish_listing / unpublish_listing: Toggle a listing's live state.
        check_verification_eligibility / submit_listing_verification: Verification flow.
        get_users: One page of portal users (agents).
    """

    @abstractmethod
    async def search_locations(self, term: str) -> list[dict[str, Any]]:
        """Search locations by free text."""
        ...

    @abstractmethod
    async def get_location(self, location_id: int) -> dict[str, Any] | None:
        """Fetch a location by id, None if not found."""
        ...

    @abstractmethod
    async def create_listing(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a draft listing, return the created listing (with ``id``)."""
        ...

    @abstractmethod
    async def update_listing(self, listing_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Replace a listing. Every required field must be present."""
        ...

    @abstractmethod
    async def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        """Fetch a listing by id, None if not found."""
        ...

    @abstractmethod
    async def get_listings(self, page: int, per_page: int) -> dict[str, Any]:
        """Return ``{"results": [...], "pagination": {"totalPages": n, ...}}``."""
        ...

    @abstractmethod
    async def publish_listing(self, listing_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def unpublish_listing(self, listing_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def check_verification_eligibility(self, listing_id: str) -> dict[str, Any]:
        """Return ``{eligible, autoSubmit, reason?, message?, errors?}``."""
        ...

    @abstractmethod
    async def submit_listing_verification(
        self, listing_id: str, agent_profile_id: int
    ) -> dict[str, Any]:
        """Submit for verification, return ``{submissionId | id, ...}``."""
        ...

    @abstractmethod
    async def get_users(self, page: int, per_page: int) -> dict[str, Any]:
        """Return ``{"data": [...], "pagination": {...}}`` of portal users."""
        ...
