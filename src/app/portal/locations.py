"""Portal location reference cache.

Resolves Property Finder location ids to display paths ("Dubai > Dubai
Marina"), cache-first. Misses are fetched from the portal and persisted; ids
the portal does not know are persisted as a NOT_FOUND_PATH sentinel so they
are never looked up again. Entries never expire; ``clear()`` is the only way
to drop them.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.app.portal.adapter import ListingPortal
from src.app.portal.errors import PortalAPIError
from src.app.properties.repository import LocationCacheRepository
from src.app.properties.schemas import LocationCacheEntry

logger = structlog.get_logger(__name__)

NOT_FOUND_PATH = "__NOT_FOUND__"
NOT_FOUND_NAME = "Unknown"


def _node_name(node: dict[str, Any]) -> str | None:
    name = node.get("name")
    if isinstance(name, dict):
        name = name.get("en")
    return name if isinstance(name, str) and name else None


def build_location_path(location: dict[str, Any] | None) -> str | None:
    """Build a display path for a portal location.

    Tries, in order: ``full_name``, ``path``, the ``location_tree`` (or
    ``tree``) nodes ordered by ``level`` and joined with " > ", then the
    location's own name.
    """
    if not location:
        return None
    full_name = location.get("full_name") or location.get("fullName")
    if isinstance(full_name, dict):
        full_name = full_name.get("en")
    if isinstance(full_name, str) and full_name:
        return full_name
    path = location.get("path")
    if isinstance(path, str) and path:
        return path

    tree = location.get("location_tree") or location.get("locationTree") or location.get("tree")
    if isinstance(tree, list) and tree:
        nodes = sorted(
            (n for n in tree if isinstance(n, dict)),
            key=lambda n: n.get("level") or 0,
        )
        names = [name for name in (_node_name(n) for n in nodes) if name]
        if names:
            return " > ".join(names)

    return _node_name(location)


def _coordinates(location: dict[str, Any]) -> tuple[float | None, float | None]:
    coords = location.get("coordinates") or location
    lat = coords.get("lat") if isinstance(coords, dict) else None
    lng = coords.get("lng", coords.get("lon")) if isinstance(coords, dict) else None
    return lat, lng


class LocationCache:
    """Cache-first resolver for portal location ids.

    Args:
        portal: Listing portal used for lookups on a cache miss.
        repository: Persisted location rows.
        batch_size: Number of concurrent lookups during ``warm``.
    """

    def __init__(
        self,
        portal: ListingPortal,
        repository: LocationCacheRepository,
        batch_size: int = 10,
    ) -> None:
        self._portal = portal
        self._repository = repository
        self._batch_size = batch_size

    async def resolve(self, location_id: int | None) -> str | None:
        """Return the display path for a location id, or None.

        None is returned for unknown ids (sentinel), for lookups that failed
        (nothing cached, retried on a later call) and for locations without
        any usable name.
        """
        if not location_id:
            return None

        cached = await self._repository.get(location_id)
        if cached is not None:
            return None if cached.path == NOT_FOUND_PATH else cached.path

        try:
            location = await self._portal.get_location(location_id)
        except (PortalAPIError, httpx.HTTPError) as exc:
            logger.warning(
                "locations.lookup_failed",
                location_id=location_id,
                error=str(exc),
            )
            return None

        if location is None:
            await self._store(
                LocationCacheEntry(id=location_id, name=NOT_FOUND_NAME, path=NOT_FOUND_PATH)
            )
            logger.info("locations.not_found", location_id=location_id)
            return None

        path = build_location_path(location)
        if not path:
            return None

        lat, lng = _coordinates(location)
        await self._store(
            LocationCacheEntry(
                id=location_id,
                name=_node_name(location) or path,
                path=path,
                type=location.get("type"),
                lat=lat,
                lng=lng,
            )
        )
        return path

    async def _store(self, entry: LocationCacheEntry) -> None:
        try:
            inserted = await self._repository.add(entry)
        except IntegrityError:
            inserted = False
        except SQLAlchemyError as exc:
            logger.warning("locations.cache_write_failed", location_id=entry.id, error=str(exc))
            return
        if not inserted:
            logger.debug("locations.cache_insert_skipped", location_id=entry.id)

    async def get_details(self, location_id: int) -> LocationCacheEntry | None:
        """Cached entry for a location (fetching it on a miss), None if unknown."""
        entry = await self._repository.get(location_id)
        if entry is None:
            await self.resolve(location_id)
            entry = await self._repository.get(location_id)
        if entry is None or entry.path == NOT_FOUND_PATH:
            return None
        return entry

    async def warm(self, location_ids: list[int]) -> int:
        """Resolve many ids with bounded concurrency.

        Returns:
            Number of ids that resolved to a path.
        """
        unique_ids = list(dict.fromkeys(i for i in location_ids if i))
        resolved = 0
        for start in range(0, len(unique_ids), self._batch_size):
            batch = unique_ids[start:start + self._batch_size]
            paths = await asyncio.gather(*(self.resolve(i) for i in batch))
            resolved += sum(1 for p in paths if p)
        logger.info("locations.warmed", requested=len(unique_ids), resolved=resolved)
        return resolved

    async def list_cached(self) -> list[LocationCacheEntry]:
        return await self._repository.list_all()

    async def clear(self) -> int:
        removed = await self._repository.clear()
        logger.warning("locations.cache_cleared", removed=removed)
        return removed
