"""Unit tests for PortalSyncEngine.

Runs the engine against FakePortal and the in-memory repositories from
conftest -- no database or HTTP calls.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from src.app.portal.errors import ListingNotFoundError, PortalAPIError, PortalSyncError
from src.app.portal.schemas import EligibilityResponse, PortalListing
from src.app.portal.sync import IMPORT_CLIENT_NAME, PortalSyncEngine, eligibility_message


MARINA_LOCATION = {"id": 50, "path": "Dubai > Dubai Marina"}


@pytest.fixture
def marina(portal):
    """Portal knows the Dubai Marina location by address search and id."""
    portal.search_results["Marina Gate 1, Dubai Marina, Dubai"] = [{"id": 50, "name": "Dubai Marina"}]
    portal.locations[50] = MARINA_LOCATION
    return MARINA_LOCATION


def _paged_engine(engine: PortalSyncEngine, page_size: int, max_pages: int = 50) -> PortalSyncEngine:
    engine._import_page_size = page_size
    engine._import_max_pages = max_pages
    return engine


# ── Create Sync ────────────────────────────────────────────────────────────


class TestCreateSync:
    async def test_creates_and_links_listing(self, engine, portal, property_repo, make_property, marina):
        prop = await make_property()

        assert await engine.create_sync(prop.id) is True

        stored = property_repo.properties[prop.id]
        assert stored.external_listing_id == "1001"
        assert stored.external_location_id == 50
        assert stored.external_location_path == "Dubai > Dubai Marina"
        assert stored.external_published is False
        payload = portal.called("create_listing")[0][0]
        assert payload["location"] == {"id": 50}
        assert payload["compliance"]["issuingClientLicenseNumber"] == "CN-1234567"

    async def test_second_call_is_a_no_op(self, engine, portal, make_property, marina):
        prop = await make_property()

        assert await engine.create_sync(prop.id) is True
        assert await engine.create_sync(prop.id) is True

        assert len(portal.called("create_listing")) == 1

    async def test_missing_property_skipped(self, engine, portal):
        assert await engine.create_sync("00000000-0000-0000-0000-000000000000") is True
        assert portal.calls == []

    async def test_publish_requested(self, engine, portal, property_repo, make_property, marina):
        prop = await make_property()

        assert await engine.create_sync(prop.id, publish=True) is True

        assert portal.called("publish_listing") == [("1001",)]
        assert property_repo.properties[prop.id].external_published is True

    async def test_publish_failure_leaves_flag_false(self, engine, portal, property_repo, make_property, marina):
        portal.fail["publish_listing"] = PortalAPIError(500, {"detail": "boom"})
        prop = await make_property()

        assert await engine.create_sync(prop.id, publish=True) is True

        stored = property_repo.properties[prop.id]
        assert stored.external_listing_id == "1001"
        assert stored.external_published is False

    async def test_create_failure_returns_false(self, engine, portal, property_repo, make_property, marina, notification_repo):
        portal.fail["create_listing"] = PortalAPIError(422, {"errors": ["title too short"]})
        prop = await make_property()

        assert await engine.create_sync(prop.id) is False

        assert property_repo.properties[prop.id].external_listing_id is None
        assert notification_repo.items == []

    async def test_location_search_falls_back_to_address_parts(self, engine, portal, property_repo, make_property):
        portal.search_results["Dubai Marina"] = [{"id": 50}]
        portal.locations[50] = MARINA_LOCATION
        prop = await make_property()

        await engine.create_sync(prop.id)

        assert [args[0] for args in portal.called("search_locations")] == [
            "Marina Gate 1, Dubai Marina, Dubai",
            "Marina Gate 1",
            "Dubai Marina",
        ]
        assert property_repo.properties[prop.id].external_location_id == 50

    async def test_search_errors_do_not_block_creation(self, engine, portal, property_repo, make_property):
        portal.fail["search_locations"] = httpx.ConnectError("refused")
        prop = await make_property()

        assert await engine.create_sync(prop.id) is True

        assert "location" not in portal.called("create_listing")[0][0]
        assert property_repo.properties[prop.id].external_listing_id == "1001"

    async def test_explicit_location_skips_search(self, engine, portal, make_property, marina):
        prop = await make_property(external_location_id=50)

        await engine.create_sync(prop.id)

        assert portal.called("search_locations") == []

    async def test_auto_submits_verification(self, engine, portal, property_repo, make_property, marina):
        agent = property_repo.add_agent(external_public_profile_id="4521")
        portal.eligibility = {"eligible": True, "autoSubmit": True}
        prop = await make_property(assigned_agent_id=agent.id)

        await engine.create_sync(prop.id)

        assert portal.called("submit_listing_verification") == [("1001", 4521)]
        assert property_repo.properties[prop.id].external_verification_status == "pending"
        assert portal.called("create_listing")[0][0]["assignedTo"] == {"id": 4521}

    async def test_no_auto_submit_without_flag(self, engine, portal, property_repo, make_property, marina):
        agent = property_repo.add_agent(external_public_profile_id="4521")
        portal.eligibility = {"eligible": True, "autoSubmit": False}
        prop = await make_property(assigned_agent_id=agent.id)

        await engine.create_sync(prop.id)

        assert portal.called("submit_listing_verification") == []


# ── Update Sync ────────────────────────────────────────────────────────────


class TestUpdateSync:
    async def test_location_required(self, engine, portal, make_property):
        prop = await make_property(address=None, emirate=None)

        with pytest.raises(PortalSyncError) as exc_info:
            await engine.update_sync(prop.id)

        assert exc_info.value.status_code == 400
        assert "Location is required" in exc_info.value.message
        assert portal.calls == []

    async def test_unknown_property(self, engine):
        with pytest.raises(PortalSyncError) as exc_info:
            await engine.update_sync("00000000-0000-0000-0000-000000000000")
        assert exc_info.value.status_code == 404

    async def test_merges_over_fetched_listing(self, engine, portal, property_repo, make_property, marina, notification_repo):
        prop = await make_property(external_location_id=50, external_listing_id="1001")
        portal.listings["1001"] = {
            "id": "1001",
            "state": {"stage": "live"},
            "title": {"en": "Old title"},
            "viewings": {"enabled": True},
        }

        updated = await engine.update_sync(prop.id)

        listing_id, body = portal.called("update_listing")[0]
        assert listing_id == "1001"
        assert body["title"]["en"].startswith("Sea view apartment")
        assert body["viewings"] == {"enabled": True}
        assert "state" not in body
        assert "id" not in body
        assert updated.external_synced_at is not None
        assert notification_repo.titles() == ["Property Updated on PF"]

    async def test_fetch_failure_falls_back_to_local_payload(self, engine, portal, make_property, marina):
        portal.fail["get_listing"] = PortalAPIError(500, {"detail": "unavailable"})
        prop = await make_property(external_location_id=50, external_listing_id="1001")

        await engine.update_sync(prop.id)

        _, body = portal.called("update_listing")[0]
        assert body["reference"] == "REF-001"
        assert "compliance" in body

    async def test_update_failure_notifies_and_raises(self, engine, portal, property_repo, make_property, marina, notification_repo):
        portal.fail["update_listing"] = PortalAPIError(422, {"errors": [{"field": "price"}]})
        prop = await make_property(external_location_id=50, external_listing_id="1001")

        with pytest.raises(PortalSyncError) as exc_info:
            await engine.update_sync(prop.id)

        assert exc_info.value.status_code == 422
        assert exc_info.value.body == {"errors": [{"field": "price"}]}
        assert notification_repo.titles() == ["Failed to Update Property on PF"]
        assert property_repo.properties[prop.id].external_synced_at is None

    async def test_network_failure_raises_502(self, engine, portal, make_property, marina):
        portal.fail["update_listing"] = httpx.ReadTimeout("timed out")
        prop = await make_property(external_location_id=50, external_listing_id="1001")

        with pytest.raises(PortalSyncError) as exc_info:
            await engine.update_sync(prop.id)
        assert exc_info.value.status_code == 502

    async def test_creates_when_unlinked(self, engine, portal, property_repo, make_property, marina, notification_repo):
        prop = await make_property()

        updated = await engine.update_sync(prop.id)

        assert updated.external_listing_id == "1001"
        assert updated.external_location_id == 50
        assert portal.called("update_listing") == []
        assert notification_repo.titles() == ["Property Published to PF"]

    async def test_concurrent_link_updates_linked_listing(self, engine, portal, property_repo, make_property, marina, monkeypatch):
        prop = await make_property()
        original = portal.create_listing

        async def racing_create(payload):
            # Another worker links the property while this create is in flight
            await property_repo.set_listing_id_if_absent(prop.id, "9999", datetime.now(timezone.utc))
            return await original(payload)

        monkeypatch.setattr(portal, "create_listing", racing_create)

        updated = await engine.update_sync(prop.id, publish=True)

        assert updated.external_listing_id == "9999"
        assert updated.external_published is True
        assert [args[0] for args in portal.called("update_listing")] == ["9999"]
        assert portal.called("publish_listing") == [("9999",)]

    async def test_publish_target_applied(self, engine, portal, make_property, marina):
        prop = await make_property(external_location_id=50, external_listing_id="1001")

        updated = await engine.update_sync(prop.id, publish=True)

        assert portal.called("publish_listing") == [("1001",)]
        assert updated.external_published is True

    async def test_notify_false_records_nothing(self, engine, make_property, marina, notification_repo):
        prop = await make_property(external_location_id=50, external_listing_id="1001")
        await engine.update_sync(prop.id, notify=False)
        assert notification_repo.items == []


# ── Publish / Unpublish ────────────────────────────────────────────────────


class TestPublishing:
    async def test_unpublish_without_listing(self, engine, portal, make_property):
        prop = await make_property()

        with pytest.raises(ListingNotFoundError):
            await engine.unpublish(prop.id)

        assert portal.calls == []

    async def test_unpublish(self, engine, portal, make_property):
        prop = await make_property(external_listing_id="1001", external_published=True)

        updated = await engine.unpublish(prop.id)

        assert portal.called("unpublish_listing") == [("1001",)]
        assert updated.external_published is False

    async def test_publish_syncs_unlinked_property_first(self, engine, portal, make_property, marina):
        prop = await make_property()

        updated = await engine.publish(prop.id)

        assert len(portal.called("create_listing")) == 1
        assert portal.called("publish_listing") == [("1001",)]
        assert updated.external_published is True

    async def test_publish_failure_keeps_state(self, engine, portal, property_repo, make_property):
        portal.fail["publish_listing"] = PortalAPIError(409, {"detail": "missing permit"})
        prop = await make_property(external_listing_id="1001")

        with pytest.raises(PortalSyncError) as exc_info:
            await engine.publish(prop.id)

        assert exc_info.value.status_code == 409
        assert property_repo.properties[prop.id].external_published is False


# ── Bulk Export ────────────────────────────────────────────────────────────


class TestBulkExport:
    async def test_counts_failures_without_aborting(self, engine, portal, make_property, marina):
        for i in range(5):
            await make_property(reference=f"OK-{i}", external_location_id=50)
        for i in range(2):
            await make_property(reference=f"BAD-{i}", address=None, emirate=None)

        result = await engine.sync_all_to_portal()

        assert (result.total, result.synced, result.failed) == (7, 5, 2)
        assert len(portal.called("create_listing")) == 5

    async def test_inactive_properties_skipped(self, engine, make_property, marina):
        await make_property(external_location_id=50)
        await make_property(external_location_id=50, is_active=False)

        result = await engine.sync_all_to_portal()

        assert result.total == 1

    async def test_no_per_property_notifications(self, engine, make_property, marina, notification_repo):
        await make_property(external_location_id=50)
        await engine.sync_all_to_portal()
        assert notification_repo.items == []


# ── Bulk Import ────────────────────────────────────────────────────────────


def _listing(listing_id: str, **extra):
    data = {
        "id": listing_id,
        "reference": f"PF-{listing_id}",
        "type": "villa",
        "title": {"en": "Family villa in Arabian Ranches"},
        "price": {"type": "sale", "amounts": {"sale": 4_200_000}},
        "bedrooms": "4",
        "bathrooms": "5",
        "uaeEmirate": "dubai",
        "location": {"id": 50},
        "amenities": ["private-pool", "balcony"],
        "media": {"images": [{"original": {"url": f"https://img/{listing_id}.jpg"}}]},
    }
    data.update(extra)
    return data


class TestBulkImport:
    async def test_imports_new_and_updates_existing(self, engine, portal, property_repo, make_property, marina):
        existing = await make_property(external_listing_id="2001", reference="LOCAL-1")
        agent = property_repo.add_agent(external_public_profile_id="31")
        portal.listings = {
            "2001": _listing("2001"),
            "2002": _listing("2002", assignedTo={"id": 31}),
            "2003": _listing("2003"),
            "bad": {"reference": "no id"},
        }

        result = await engine.sync_from_portal()

        assert (result.total, result.synced, result.failed) == (4, 3, 1)
        assert len(property_repo.properties) == 3
        assert property_repo.properties[existing.id].reference == "PF-2001"

        imported = {p.external_listing_id: p for p in property_repo.properties.values()}
        assert imported["2002"].client_name == IMPORT_CLIENT_NAME
        assert imported["2002"].assigned_agent_id == agent.id
        assert imported["2003"].external_location_path == "Dubai > Dubai Marina"
        assert imported["2003"].price == 4_200_000.0
        assert property_repo.amenities == {"private-pool", "balcony"}
        assert portal.called("get_location") == [(50,)]

    async def test_tree_location_not_looked_up(self, engine, portal, property_repo):
        portal.listings = {
            "3001": _listing(
                "3001",
                location={"id": 60, "tree": [{"level": 0, "name": "Dubai"}, {"level": 1, "name": "JBR"}]},
            ),
        }

        await engine.sync_from_portal()

        prop = next(iter(property_repo.properties.values()))
        assert prop.external_location_path == "Dubai > JBR"
        assert portal.called("get_location") == []

    async def test_paginates_until_total_pages(self, engine, portal, property_repo, marina):
        portal.listings = {str(i): _listing(str(i)) for i in range(5)}

        result = await _paged_engine(engine, page_size=2).sync_from_portal()

        assert result.synced == 5
        assert [args[0] for args in portal.called("get_listings")] == [1, 2, 3]

    async def test_page_limit_stops_import(self, engine, portal, marina):
        portal.listings = {str(i): _listing(str(i)) for i in range(5)}

        result = await _paged_engine(engine, page_size=2, max_pages=2).sync_from_portal()

        assert result.total == 4
        assert len(portal.called("get_listings")) == 2

    async def test_page_failure_keeps_fetched_pages(self, engine, portal, marina, monkeypatch):
        portal.listings = {str(i): _listing(str(i)) for i in range(5)}
        original = portal.get_listings

        async def flaky(page, per_page):
            if page == 2:
                raise PortalAPIError(503, {"detail": "busy"})
            return await original(page, per_page)

        monkeypatch.setattr(portal, "get_listings", flaky)

        result = await _paged_engine(engine, page_size=2).sync_from_portal()

        assert (result.total, result.synced) == (2, 2)

    async def test_listing_repeated_across_pages_imported_once(self, engine, portal, property_repo, marina, monkeypatch):
        pages = {
            1: [_listing("2001"), _listing("2002")],
            2: [_listing("2002"), _listing("2003")],
        }

        async def shifting(page, per_page):
            return {"results": pages[page], "pagination": {"page": page, "totalPages": 2}}

        monkeypatch.setattr(portal, "get_listings", shifting)

        result = await _paged_engine(engine, page_size=2).sync_from_portal()

        assert (result.total, result.synced, result.failed) == (3, 3, 0)
        ids = sorted(p.external_listing_id for p in property_repo.properties.values())
        assert ids == ["2001", "2002", "2003"]

    async def test_created_listing_recorded_for_later_chunks(self, engine, portal, property_repo, marina):
        portal.listings = {"2001": _listing("2001")}
        existing: dict[str, str] = {}
        agents: dict[str, str] = {}
        listing = PortalListing.model_validate(_listing("2001"))

        assert await engine._import_one(listing, agents, agents, existing) is True
        assert await engine._import_one(listing, agents, agents, existing) is True

        assert len(property_repo.properties) == 1
        assert existing == {"2001": next(iter(property_repo.properties))}


# ── Agent Import ───────────────────────────────────────────────────────────


class TestAgentImport:
    async def test_upserts_by_email(self, engine, portal, property_repo):
        property_repo.add_agent(email="omar@example.com", name="Old Name")
        portal.users = [
            {"id": 1, "email": "omar@example.com", "firstName": "Omar", "status": "active",
             "publicProfile": {"id": 4521}},
            {"id": 2, "email": "lina@example.com", "firstName": "Lina", "lastName": "Saad"},
            {"id": 3, "firstName": "No Email"},
        ]

        result = await engine.sync_agents_from_portal()

        assert (result.total, result.synced, result.failed) == (3, 2, 1)
        by_email = {a.email: a for a in property_repo.agents.values()}
        assert len(by_email) == 2
        assert by_email["omar@example.com"].name == "Omar"
        assert by_email["omar@example.com"].external_public_profile_id == "4521"


# ── Verification ───────────────────────────────────────────────────────────


class TestVerification:
    async def test_eligibility_unsynced(self, engine, portal, make_property):
        prop = await make_property()

        result = await engine.check_verification_eligibility(prop.id)

        assert result.eligible is False
        assert "not synced" in result.reason
        assert portal.calls == []

    async def test_eligibility_requires_agent_profile(self, engine, make_property):
        prop = await make_property(external_listing_id="1001", external_published=True)
        result = await engine.check_verification_eligibility(prop.id)
        assert result.eligible is False
        assert "agent" in result.reason.lower()

    async def test_eligibility_from_portal(self, engine, portal, property_repo, make_property):
        agent = property_repo.add_agent(external_public_profile_id="4521")
        portal.eligibility = {"eligible": True, "autoSubmit": True}
        prop = await make_property(
            external_listing_id="1001", external_published=True, assigned_agent_id=agent.id
        )

        result = await engine.check_verification_eligibility(prop.id)

        assert result.eligible is True
        assert result.auto_submit is True

    async def test_eligibility_portal_failure(self, engine, portal, property_repo, make_property):
        agent = property_repo.add_agent(external_public_profile_id="4521")
        portal.fail["check_verification_eligibility"] = PortalAPIError(500)
        prop = await make_property(
            external_listing_id="1001", external_published=True, assigned_agent_id=agent.id
        )

        result = await engine.check_verification_eligibility(prop.id)

        assert result.eligible is False
        assert result.reason == "Could not check eligibility"

    async def test_submit_requires_published(self, engine, make_property):
        prop = await make_property(external_listing_id="1001")
        with pytest.raises(PortalSyncError) as exc_info:
            await engine.submit_verification(prop.id)
        assert exc_info.value.status_code == 400

    async def test_submit_ineligible_uses_portal_reasons(self, engine, portal, property_repo, make_property):
        agent = property_repo.add_agent(external_public_profile_id="4521")
        portal.eligibility = {"eligible": False, "errors": [{"field": "images", "error": "at least 10 required"}]}
        prop = await make_property(
            external_listing_id="1001", external_published=True, assigned_agent_id=agent.id
        )

        with pytest.raises(PortalSyncError) as exc_info:
            await engine.submit_verification(prop.id)

        assert exc_info.value.message == "images: at least 10 required"
        assert portal.called("submit_listing_verification") == []

    async def test_submit(self, engine, portal, property_repo, make_property):
        agent = property_repo.add_agent(external_public_profile_id="4521")
        portal.eligibility = {"eligible": True}
        prop = await make_property(
            external_listing_id="1001", external_published=True, assigned_agent_id=agent.id
        )

        result = await engine.submit_verification(prop.id)

        assert result.success is True
        assert result.submission_id == "sub-1"
        assert portal.called("submit_listing_verification") == [("1001", 4521)]
        assert property_repo.properties[prop.id].external_verification_status == "pending"


class TestEligibilityMessage:
    def test_joins_all_shapes(self):
        response = EligibilityResponse.model_validate({
            "message": "Listing is not eligible",
            "errors": ["Permit expired", {"message": "Too few photos"}],
            "details": {"message": "Permit expired"},
        })
        assert eligibility_message(response) == (
            "Listing is not eligible. Permit expired. Too few photos"
        )

    def test_default_message(self):
        assert eligibility_message(EligibilityResponse()) == "Property is not eligible for verification"


# ── Listing Details ────────────────────────────────────────────────────────


class TestListingDetails:
    async def test_sync_details_pulls_portal_state(self, engine, portal, make_property):
        prop = await make_property(external_listing_id="1001")
        portal.listings["1001"] = {
            "id": "1001",
            "location": {"id": 50, "path": "Dubai > Dubai Marina"},
            "qualityScore": {"value": 87},
            "verificationStatus": "approved",
        }

        updated = await engine.sync_details_from_portal(prop.id)

        assert updated.external_location_id == 50
        assert updated.external_location_path == "Dubai > Dubai Marina"
        assert updated.external_quality_score == 87.0
        assert updated.external_verification_status == "approved"

    async def test_sync_details_unsynced(self, engine, make_property):
        prop = await make_property()
        with pytest.raises(ListingNotFoundError):
            await engine.sync_details_from_portal(prop.id)

    async def test_portal_listing_with_portal_score(self, engine, portal, make_property):
        prop = await make_property(external_listing_id="1001")
        portal.listings["1001"] = {"id": "1001", "qualityScore": 87}

        view = await engine.get_portal_listing(prop.id)

        assert view.listing["id"] == "1001"
        assert (view.quality_score.value, view.quality_score.source) == (87, "portal")

    async def test_portal_listing_falls_back_to_local_score(self, engine, make_property):
        prop = await make_property()

        view = await engine.get_portal_listing(prop.id)

        assert view.listing is None
        assert view.quality_score.source == "local"

    async def test_search_locations_short_term(self, engine, portal):
        assert await engine.search_locations(" a ") == []
        assert portal.calls == []


# ── Location Backfill ──────────────────────────────────────────────────────


class TestLocationBackfill:
    async def test_backfill_paths(self, engine, portal, property_repo, make_property, marina):
        ok = await make_property(external_location_id=50)
        await make_property(external_location_id=999)

        result = await engine.backfill_location_paths()

        assert (result.total, result.updated, result.failed) == (2, 1, 1)
        assert len(result.errors) == 1
        assert property_repo.properties[ok.id].external_location_path == "Dubai > Dubai Marina"

    async def test_fetch_missing_location_ids(self, engine, portal, property_repo, make_property):
        prop = await make_property(external_listing_id="1001")
        portal.listings["1001"] = {"id": "1001", "location": {"id": 50, "path": "Dubai > Dubai Marina"}}

        result = await engine.fetch_missing_location_paths()

        assert result.updated == 1
        stored = property_repo.properties[prop.id]
        assert stored.external_location_id == 50
        assert stored.external_location_path == "Dubai > Dubai Marina"
