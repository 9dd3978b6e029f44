"""Unit tests for the location reference cache.

Uses FakePortal and InMemoryLocationCacheRepository from conftest.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
from sqlalchemy.exc import IntegrityError, OperationalError

from src.app.portal.errors import PortalAPIError
from src.app.portal.locations import NOT_FOUND_PATH, LocationCache, build_location_path
from src.app.properties.schemas import LocationCacheEntry


MARINA = {
    "id": 50,
    "name": {"en": "Dubai Marina"},
    "type": "COMMUNITY",
    "coordinates": {"lat": 25.08, "lng": 55.14},
    "tree": [
        {"level": 1, "name": "Dubai Marina"},
        {"level": 0, "name": "Dubai"},
    ],
}


# ── Path Building ──────────────────────────────────────────────────────────


class TestBuildLocationPath:
    def test_full_name_preferred(self):
        assert build_location_path({"full_name": "Dubai > JLT", "path": "x"}) == "Dubai > JLT"

    def test_path_field(self):
        assert build_location_path({"path": "Dubai > Downtown"}) == "Dubai > Downtown"

    def test_tree_sorted_by_level(self):
        assert build_location_path(MARINA) == "Dubai > Dubai Marina"

    def test_name_fallback(self):
        assert build_location_path({"name": "Al Barsha"}) == "Al Barsha"

    def test_nothing_usable(self):
        assert build_location_path({"id": 1}) is None
        assert build_location_path(None) is None


# ── Resolve ────────────────────────────────────────────────────────────────


class TestResolve:
    async def test_miss_fetches_and_caches(self, location_cache, portal, location_repo):
        portal.locations[50] = MARINA

        assert await location_cache.resolve(50) == "Dubai > Dubai Marina"
        assert await location_cache.resolve(50) == "Dubai > Dubai Marina"

        assert portal.called("get_location") == [(50,)]
        entry = location_repo.entries[50]
        assert entry.type == "COMMUNITY"
        assert entry.lat == 25.08
        assert entry.name == "Dubai Marina"

    async def test_unknown_id_cached_as_sentinel(self, location_cache, portal, location_repo):
        assert await location_cache.resolve(999) is None
        assert await location_cache.resolve(999) is None

        assert portal.called("get_location") == [(999,)]
        assert location_repo.entries[999].path == NOT_FOUND_PATH

    async def test_lookup_failure_not_cached(self, location_cache, portal, location_repo):
        portal.fail["get_location"] = PortalAPIError(503, {"detail": "down"})

        assert await location_cache.resolve(50) is None
        assert location_repo.entries == {}

        del portal.fail["get_location"]
        portal.locations[50] = MARINA
        assert await location_cache.resolve(50) == "Dubai > Dubai Marina"

    async def test_network_error_not_cached(self, location_cache, portal, location_repo):
        portal.fail["get_location"] = httpx.ConnectError("refused")
        assert await location_cache.resolve(50) is None
        assert location_repo.entries == {}

    async def test_empty_id(self, location_cache, portal):
        assert await location_cache.resolve(None) is None
        assert await location_cache.resolve(0) is None
        assert portal.calls == []

    async def test_duplicate_insert_race_swallowed(self, portal):
        portal.locations[50] = MARINA
        repository = AsyncMock()
        repository.get.return_value = None
        repository.add.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

        cache = LocationCache(portal, repository)
        assert await cache.resolve(50) == "Dubai > Dubai Marina"

    async def test_cache_write_failure_still_returns_path(self, portal):
        portal.locations[50] = MARINA
        repository = AsyncMock()
        repository.get.return_value = None
        repository.add.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))

        cache = LocationCache(portal, repository)
        assert await cache.resolve(50) == "Dubai > Dubai Marina"


# ── Bulk Operations ────────────────────────────────────────────────────────


class TestWarmAndDetails:
    async def test_warm_dedupes_ids(self, location_cache, portal):
        portal.locations[50] = MARINA
        portal.locations[51] = {"id": 51, "path": "Dubai > JBR"}

        resolved = await location_cache.warm([50, 51, 50, 999])

        assert resolved == 2
        assert sorted(args[0] for args in portal.called("get_location")) == [50, 51, 999]

    async def test_get_details_fetches_on_miss(self, location_cache, portal):
        portal.locations[50] = MARINA
        entry = await location_cache.get_details(50)
        assert entry is not None
        assert entry.path == "Dubai > Dubai Marina"

    async def test_get_details_hides_sentinel(self, location_cache, location_repo):
        await location_repo.add(LocationCacheEntry(id=7, name="Unknown", path=NOT_FOUND_PATH))
        assert await location_cache.get_details(7) is None

    async def test_clear(self, location_cache, location_repo):
        await location_repo.add(LocationCacheEntry(id=1, name="A", path="A"))
        await location_repo.add(LocationCacheEntry(id=2, name="B", path="B"))
        assert await location_cache.clear() == 2
        assert await location_cache.list_cached() == []
