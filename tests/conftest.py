"""Shared test doubles and fixtures for the portal sync tests.

Provides:
- In-memory repositories matching PropertyRepository, LocationCacheRepository,
  NotificationRepository and IntegrationConfigRepository
- FakePortal: in-memory ListingPortal that records every call
- Fixtures wiring a PortalSyncEngine over those doubles
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

from src.app.config import Settings
from src.app.portal.adapter import ListingPortal
from src.app.portal.credentials import CredentialProvider
from src.app.portal.locations import LocationCache
from src.app.portal.notifications import NotificationService
from src.app.portal.sync import PortalSyncEngine
from src.app.properties.schemas import (
    AgentRead,
    AgentUpsert,
    LocationCacheEntry,
    NotificationRead,
    NotificationType,
    PropertyRead,
)


# ── In-Memory Repositories ───────────────────────────────────────────────────


class InMemoryPropertyRepository:
    """In-memory PropertyRepository for testing without database."""

    def __init__(self) -> None:
        self.properties: dict[str, PropertyRead] = {}
        self.agents: dict[str, AgentRead] = {}
        self.amenities: set[str] = set()

    def _write(self, current: dict[str, Any], fields: dict[str, Any]) -> PropertyRead:
        values = {k: v for k, v in fields.items() if k in PropertyRead.model_fields}
        return PropertyRead(**{**current, **values})

    async def create_property(self, fields: dict[str, Any]) -> PropertyRead:
        now = datetime.now(timezone.utc)
        prop = self._write(
            {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}, fields
        )
        self.properties[prop.id] = prop
        return prop

    async def get_property(self, property_id: str) -> PropertyRead | None:
        return self.properties.get(property_id)

    async def update_property(
        self, property_id: str, fields: dict[str, Any]
    ) -> PropertyRead | None:
        current = self.properties.get(property_id)
        if current is None:
            return None
        fields = dict(fields)
        if current.external_listing_id:
            fields.pop("external_listing_id", None)
        prop = self._write(current.model_dump(), fields)
        self.properties[property_id] = prop
        return prop

    async def set_listing_id_if_absent(
        self, property_id: str, listing_id: str, synced_at: datetime
    ) -> bool:
        current = self.properties.get(property_id)
        if current is None or current.external_listing_id:
            return False
        self.properties[property_id] = current.model_copy(
            update={"external_listing_id": listing_id, "external_synced_at": synced_at}
        )
        return True

    async def delete_property(self, property_id: str) -> bool:
        return self.properties.pop(property_id, None) is not None

    async def list_properties(
        self, active_only: bool = False, limit: int = 100, offset: int = 0
    ) -> list[PropertyRead]:
        props = [p for p in self.properties.values() if p.is_active or not active_only]
        return props[offset:offset + limit]

    async def list_active_property_ids(self) -> list[str]:
        return [p.id for p in self.properties.values() if p.is_active]

    async def listing_id_map(self) -> dict[str, str]:
        return {
            p.external_listing_id: p.id
            for p in self.properties.values()
            if p.external_listing_id
        }

    async def list_missing_location_path(self) -> list[PropertyRead]:
        return [
            p for p in self.properties.values()
            if p.external_location_id and not p.external_location_path
        ]

    async def list_missing_location_id(self) -> list[PropertyRead]:
        return [
            p for p in self.properties.values()
            if p.external_listing_id and not p.external_location_id
        ]

    async def get_agent(self, agent_id: str) -> AgentRead | None:
        return self.agents.get(agent_id)

    async def list_agents(self) -> list[AgentRead]:
        return list(self.agents.values())

    async def agent_lookup_maps(self) -> tuple[dict[str, str], dict[str, str]]:
        by_profile = {
            a.external_public_profile_id: a.id
            for a in self.agents.values()
            if a.external_public_profile_id
        }
        by_user = {a.external_user_id: a.id for a in self.agents.values() if a.external_user_id}
        return by_profile, by_user

    async def upsert_agent_by_email(self, data: AgentUpsert) -> AgentRead:
        for agent in self.agents.values():
            if agent.email == data.email:
                updated = agent.model_copy(update=data.model_dump())
                self.agents[agent.id] = updated
                return updated
        agent = AgentRead(id=str(uuid.uuid4()), **data.model_dump())
        self.agents[agent.id] = agent
        return agent

    async def ensure_amenities(self, names: list[str]) -> int:
        new = set(names) - self.amenities
        self.amenities |= new
        return len(new)

    def add_agent(self, **fields: Any) -> AgentRead:
        defaults = {"id": str(uuid.uuid4()), "name": "Sara Agent", "email": "sara@example.com"}
        agent = AgentRead(**{**defaults, **fields})
        self.agents[agent.id] = agent
        return agent


class InMemoryLocationCacheRepository:
    def __init__(self) -> None:
        self.entries: dict[int, LocationCacheEntry] = {}

    async def get(self, location_id: int) -> LocationCacheEntry | None:
        return self.entries.get(location_id)

    async def add(self, entry: LocationCacheEntry) -> bool:
        if entry.id in self.entries:
            return False
        self.entries[entry.id] = entry
        return True

    async def list_all(self) -> list[LocationCacheEntry]:
        return list(self.entries.values())

    async def clear(self) -> int:
        removed = len(self.entries)
        self.entries.clear()
        return removed


class InMemoryNotificationRepository:
    def __init__(self) -> None:
        self.items: list[NotificationRead] = []

    async def create(self, type: NotificationType, title: str, message: str) -> NotificationRead:
        item = NotificationRead(
            id=str(uuid.uuid4()),
            type=type,
            title=title,
            message=message,
            created_at=datetime.now(timezone.utc),
        )
        self.items.append(item)
        return item

    async def list_recent(self, limit: int = 10) -> list[NotificationRead]:
        return list(reversed(self.items))[:limit]

    async def count_unread(self) -> int:
        return sum(1 for n in self.items if not n.is_read)

    async def mark_all_read(self) -> int:
        unread = [n for n in self.items if not n.is_read]
        self.items = [n.model_copy(update={"is_read": True}) for n in self.items]
        return len(unread)

    def titles(self) -> list[str]:
        return [n.title for n in self.items]


class InMemoryIntegrationConfigRepository:
    def __init__(self, credentials: dict[str, Any] | None = None) -> None:
        self.rows: dict[str, tuple[dict[str, Any], bool]] = {}
        if credentials is not None:
            self.rows["property_finder"] = (credentials, True)

    async def get(self, provider: str) -> dict[str, Any] | None:
        row = self.rows.get(provider)
        if row is None or not row[1]:
            return None
        return dict(row[0])

    async def save(
        self, provider: str, credentials: dict[str, Any], is_enabled: bool = True
    ) -> None:
        self.rows[provider] = (credentials, is_enabled)


# ── Fake Portal ──────────────────────────────────────────────────────────────


class FakePortal(ListingPortal):
    """In-memory listing portal.

    ``fail`` maps a method name to the exception that method raises.
    ``calls`` records (method, args) tuples in call order.
    """

    def __init__(self) -> None:
        self.listings: dict[str, dict[str, Any]] = {}
        self.locations: dict[int, dict[str, Any]] = {}
        self.search_results: dict[str, list[dict[str, Any]]] = {}
        self.eligibility: dict[str, Any] = {"eligible": False}
        self.users: list[dict[str, Any]] = []
        self.fail: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._next_id = 1000

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.fail:
            raise self.fail[method]

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    async def search_locations(self, term: str) -> list[dict[str, Any]]:
        self._record("search_locations", term)
        return self.search_results.get(term, [])

    async def get_location(self, location_id: int) -> dict[str, Any] | None:
        self._record("get_location", location_id)
        return self.locations.get(location_id)

    async def create_listing(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_listing", payload)
        self._next_id += 1
        listing_id = str(self._next_id)
        self.listings[listing_id] = {**payload, "id": listing_id}
        return {"id": listing_id}

    async def update_listing(self, listing_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_listing", listing_id, payload)
        self.listings[listing_id] = {**payload, "id": listing_id}
        return {"id": listing_id}

    async def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        self._record("get_listing", listing_id)
        return self.listings.get(listing_id)

    async def get_listings(self, page: int, per_page: int) -> dict[str, Any]:
        self._record("get_listings", page, per_page)
        items = list(self.listings.values())
        start = (page - 1) * per_page
        total_pages = max(1, -(-len(items) // per_page))
        return {
            "results": items[start:start + per_page],
            "pagination": {"page": page, "perPage": per_page, "totalPages": total_pages},
        }

    async def publish_listing(self, listing_id: str) -> dict[str, Any]:
        self._record("publish_listing", listing_id)
        return {}

    async def unpublish_listing(self, listing_id: str) -> dict[str, Any]:
        self._record("unpublish_listing", listing_id)
        return {}

    async def check_verification_eligibility(self, listing_id: str) -> dict[str, Any]:
        self._record("check_verification_eligibility", listing_id)
        return dict(self.eligibility)

    async def submit_listing_verification(
        self, listing_id: str, agent_profile_id: int
    ) -> dict[str, Any]:
        self._record("submit_listing_verification", listing_id, agent_profile_id)
        return {"submissionId": "sub-1"}

    async def get_users(self, page: int, per_page: int) -> dict[str, Any]:
        self._record("get_users", page, per_page)
        start = (page - 1) * per_page
        return {"data": self.users[start:start + per_page]}


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(
        PF_API_KEY="test-key",
        PF_API_SECRET="test-secret",
        PF_COMPANY_LICENSE_NUMBER="CN-1234567",
        SYNC_SCHEDULER_ENABLED=False,
    )


@pytest.fixture
def property_repo() -> InMemoryPropertyRepository:
    return InMemoryPropertyRepository()


@pytest.fixture
def location_repo() -> InMemoryLocationCacheRepository:
    return InMemoryLocationCacheRepository()


@pytest.fixture
def notification_repo() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def portal() -> FakePortal:
    return FakePortal()


@pytest.fixture
def notifications(notification_repo) -> NotificationService:
    return NotificationService(notification_repo)


@pytest.fixture
def integration_repo() -> InMemoryIntegrationConfigRepository:
    return InMemoryIntegrationConfigRepository()


@pytest.fixture
def credentials(integration_repo, settings) -> CredentialProvider:
    return CredentialProvider(integration_repo, settings)


@pytest.fixture
def location_cache(portal, location_repo) -> LocationCache:
    return LocationCache(portal, location_repo, batch_size=10)


@pytest.fixture
def engine(property_repo, portal, location_cache, notifications, credentials) -> PortalSyncEngine:
    return PortalSyncEngine(
        property_repo,
        portal,
        location_cache,
        notifications,
        credentials,
        export_chunk_size=5,
        export_chunk_delay=0,
        import_chunk_size=20,
        import_page_size=100,
        import_max_pages=50,
    )


def property_fields(**overrides: Any) -> dict[str, Any]:
    """Catalog fields for a typical Dubai Marina apartment for sale."""
    fields: dict[str, Any] = {
        "reference": "REF-001",
        "property_title": "Sea view apartment in Dubai Marina tower",
        "property_description": "Bright two bedroom apartment with a balcony.",
        "category": "residential",
        "purpose": "sale",
        "property_type": "apartment",
        "furnishing_type": "furnished",
        "bedrooms": 2,
        "bathrooms": 3,
        "area": 1250.0,
        "price": 1_850_000.0,
        "address": "Marina Gate 1, Dubai Marina, Dubai",
        "emirate": "Dubai",
        "permit_number": "7117",
        "cover_photo": "https://cdn.example.com/cover.jpg",
        "media_images": ["https://cdn.example.com/1.jpg", "https://cdn.example.com/2.jpg"],
        "amenities": ["Balcony", "Shared Pool", "Sauna"],
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def make_property(property_repo):
    """Async factory storing a property built from ``property_fields``."""

    async def _make(**overrides: Any) -> PropertyRead:
        return await property_repo.create_property(property_fields(**overrides))

    return _make
