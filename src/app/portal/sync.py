"""Portal sync engine -- keeps the property catalog and Property Finder consistent.

Orchestrates the listing lifecycle between the catalog (PropertyRepository)
and the portal (ListingPortal):

- create-sync: background, idempotent (skips properties already linked),
  never raises; failures are logged and reported through the return value
  so the job queue can retry and dead-letter them.
- update-sync: fetch-merge-push with local values winning; location is
  mandatory; failures notify and raise PortalSyncError.
- publish / unpublish / verification: pass-through with local pre-checks.
- bulk export / import: fixed-window concurrency with per-item isolation.

State on the property only moves forward when the portal call succeeded.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.app.core.monitoring import track_sync_operation
from src.app.portal.adapter import ListingPortal
from src.app.portal.credentials import CredentialProvider
from src.app.portal.errors import (
    ListingNotFoundError,
    PortalAPIError,
    PortalSyncError,
    PropertyNotFoundError,
)
from src.app.portal.locations import LocationCache, build_location_path
from src.app.portal.mapping import (
    agent_from_portal_user,
    from_portal_listing,
    merge_listing,
    to_listing_payload,
)
from src.app.portal.notifications import NotificationService
from src.app.portal.quality import local_quality_score
from src.app.portal.schemas import EligibilityResponse, PortalListing
from src.app.properties.repository import PropertyRepository
from src.app.properties.schemas import (
    LocationBackfillResult,
    NotificationType,
    PortalListingView,
    PropertyRead,
    QualityScore,
    SyncResult,
    VerificationEligibility,
    VerificationSubmission,
)

logger = structlog.get_logger(__name__)

IMPORT_CLIENT_NAME = "Property Finder Import"
LOCATION_REQUIRED_MESSAGE = (
    "Property Finder Location is required. Please select a location before syncing."
)
DEFAULT_INELIGIBLE_MESSAGE = "Property is not eligible for verification"

_TRANSPORT_ERRORS = (PortalAPIError, httpx.HTTPError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def eligibility_message(response: EligibilityResponse) -> str:
    """Flatten the portal's eligibility error shapes into one sentence list."""
    reasons: list[str] = []
    for value in (response.message, response.error, response.reason):
        if value:
            reasons.append(value)
    for item in response.errors or []:
        if isinstance(item, str):
            reasons.append(item)
        elif isinstance(item, dict):
            if item.get("message"):
                reasons.append(item["message"])
            elif item.get("field") and item.get("error"):
                reasons.append(f"{item['field']}: {item['error']}")
    details = response.details
    if isinstance(details, str) and details:
        reasons.append(details)
    elif isinstance(details, dict) and details.get("message"):
        reasons.append(details["message"])
    unique = list(dict.fromkeys(reasons))
    return ". ".join(unique) if unique else DEFAULT_INELIGIBLE_MESSAGE


def _error_context(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, PortalAPIError):
        return {"status_code": exc.status_code, "body": exc.body, "error": str(exc)}
    return {"error": str(exc)}


class PortalSyncEngine:
    """Coordinates the listing lifecycle against the portal.

    Args:
        repository: Catalog storage (properties, agents, amenities).
        portal: Listing portal facade.
        locations: Location reference cache.
        notifications: Operator notification sink.
        credentials: Resolves the company license for the compliance block.
        export_chunk_size: Concurrent update-syncs per bulk export window.
        export_chunk_delay: Seconds to wait between bulk export windows.
        import_chunk_size: Concurrent upserts per bulk import window.
        import_page_size: Listings requested per page.
        import_max_pages: Upper bound on pages fetched in one import.
    """

    def __init__(
        self,
        repository: PropertyRepository,
        portal: ListingPortal,
        locations: LocationCache,
        notifications: NotificationService,
        credentials: CredentialProvider,
        *,
        export_chunk_size: int = 5,
        export_chunk_delay: float = 1.0,
        import_chunk_size: int = 20,
        import_page_size: int = 100,
        import_max_pages: int = 50,
    ) -> None:
        self._repository = repository
        self._portal = portal
        self._locations = locations
        self._notifications = notifications
        self._credentials = credentials
        self._export_chunk_size = export_chunk_size
        self._export_chunk_delay = export_chunk_delay
        self._import_chunk_size = import_chunk_size
        self._import_page_size = import_page_size
        self._import_max_pages = import_max_pages

    # ── Helpers ─────────────────────────────────────────────────────────────

    async def _get_property(self, property_id: str) -> PropertyRead:
        prop = await self._repository.get_property(property_id)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop

    async def _agent_profile_id(self, prop: PropertyRead) -> str | None:
        if not prop.assigned_agent_id:
            return None
        agent = await self._repository.get_agent(prop.assigned_agent_id)
        return agent.external_public_profile_id if agent else None

    @staticmethod
    def _search_terms(prop: PropertyRead) -> list[str]:
        """Location search terms: full address, its comma parts, then emirate."""
        terms: list[str] = []
        if prop.address:
            terms.append(prop.address.strip())
            terms.extend(p.strip() for p in prop.address.split(",") if len(p.strip()) > 2)
        if prop.emirate:
            terms.append(prop.emirate.strip())
        return list(dict.fromkeys(t for t in terms if t))

    async def _first_location_id(self, terms: list[str]) -> int | None:
        for term in terms:
            try:
                results = await self._portal.search_locations(term)
            except _TRANSPORT_ERRORS as exc:
                logger.warning("portal.location_search_failed", term=term, **_error_context(exc))
                continue
            if results and results[0].get("id") is not None:
                return int(results[0]["id"])
        return None

    async def _build_payload(
        self, prop: PropertyRead, location_id: int | None
    ) -> dict[str, Any]:
        credentials = await self._credentials.get()
        payload = to_listing_payload(
            prop,
            license_number=credentials.company_license_number,
            agent_profile_id=await self._agent_profile_id(prop),
            location_id=location_id,
        )
        return payload.to_api()

    async def _location_fields(self, location_id: int | None) -> dict[str, Any]:
        if not location_id:
            return {}
        return {
            "external_location_id": location_id,
            "external_location_path": await self._locations.resolve(location_id),
        }

    async def _set_publish_state(
        self, listing_id: str, current: bool, target: bool | None
    ) -> bool:
        """Move a listing to the requested publish state, return the actual state."""
        if target is None or target == current:
            return current
        try:
            if target:
                await self._portal.publish_listing(listing_id)
            else:
                await self._portal.unpublish_listing(listing_id)
        except _TRANSPORT_ERRORS as exc:
            logger.warning(
                "portal.publish_state_change_failed",
                listing_id=listing_id,
                target=target,
                **_error_context(exc),
            )
            return current
        return target

    # ── Create Sync ─────────────────────────────────────────────────────────

    async def create_sync(self, property_id: str, publish: bool = False) -> bool:
        """Create the portal listing for a newly stored property.

        Never raises. The catalog write that triggered this has already
        succeeded and is not affected by the outcome.

        Args:
            property_id: Catalog property id.
            publish: Publish the listing right after creating it.

        Returns:
            True when the property is linked (or was already), False on failure.
        """
        async with track_sync_operation("create_sync") as tracker:
            try:
                return await self._create_sync(property_id, publish)
            except Exception as exc:
                tracker["status"] = "error"
                logger.error(
                    "portal.create_sync_failed",
                    property_id=property_id,
                    exc_info=True,
                    **_error_context(exc),
                )
                return False

    async def _create_sync(self, property_id: str, publish: bool) -> bool:
        prop = await self._repository.get_property(property_id)
        if prop is None:
            logger.warning("portal.create_sync_skipped", property_id=property_id, reason="not_found")
            return True
        if prop.external_listing_id:
            logger.info(
                "portal.create_sync_skipped",
                property_id=property_id,
                listing_id=prop.external_listing_id,
                reason="already_linked",
            )
            return True

        location_id = prop.external_location_id or await self._first_location_id(
            self._search_terms(prop)
        )
        payload = await self._build_payload(prop, location_id)
        created = await self._portal.create_listing(payload)
        listing_id = str(created["id"])

        if not await self._repository.set_listing_id_if_absent(prop.id, listing_id, _utcnow()):
            logger.warning(
                "portal.listing_link_conflict",
                property_id=property_id,
                listing_id=listing_id,
            )
            return True

        fields = await self._location_fields(location_id)
        published = await self._set_publish_state(listing_id, False, bool(publish))
        fields["external_published"] = published
        await self._repository.update_property(prop.id, fields)
        logger.info(
            "portal.create_sync_complete",
            property_id=property_id,
            listing_id=listing_id,
            location_id=location_id,
            published=published,
        )

        await self._auto_submit_verification(prop, listing_id)
        return True

    async def _auto_submit_verification(self, prop: PropertyRead, listing_id: str) -> None:
        """Submit for verification when the portal reports auto-submit eligibility."""
        try:
            raw = await self._portal.check_verification_eligibility(listing_id)
            eligibility = EligibilityResponse.model_validate(raw or {})
            if not (eligibility.eligible and eligibility.auto_submit):
                return
            profile_id = await self._agent_profile_id(prop)
            if not profile_id:
                logger.info("portal.auto_verification_skipped", property_id=prop.id, reason="no_agent_profile")
                return
            await self._portal.submit_listing_verification(listing_id, int(profile_id))
            await self._repository.update_property(
                prop.id, {"external_verification_status": "pending"}
            )
            logger.info("portal.auto_verification_submitted", property_id=prop.id, listing_id=listing_id)
        except (*_TRANSPORT_ERRORS, ValidationError) as exc:
            logger.warning(
                "portal.auto_verification_failed",
                property_id=prop.id,
                listing_id=listing_id,
                **_error_context(exc),
            )

    # ── Update Sync ─────────────────────────────────────────────────────────

    async def update_sync(
        self, property_id: str, publish: bool | None = None, notify: bool = True
    ) -> PropertyRead:
        """Push the current property state to the portal.

        Creates the listing when the property has none; otherwise fetches the
        portal listing, merges local values over it and sends the full result.

        Args:
            property_id: Catalog property id.
            publish: Desired publish state, None to leave it unchanged.
            notify: Record success/failure notifications.

        Returns:
            The property after sync.

        Raises:
            PropertyNotFoundError: Unknown property.
            PortalSyncError: No location could be determined (400), or the
                portal rejected the update (portal status and body).
        """
        prop = await self._get_property(property_id)

        location_id = prop.external_location_id
        if not location_id:
            term = prop.address or prop.emirate
            location_id = await self._first_location_id([term] if term else [])
        if not location_id:
            raise PortalSyncError(400, LOCATION_REQUIRED_MESSAGE)

        async with track_sync_operation("update_sync") as tracker:
            try:
                payload = await self._build_payload(prop, location_id)
                listing_id = prop.external_listing_id
                published = prop.external_published
                created = False

                if not listing_id:
                    new_id = str((await self._portal.create_listing(payload))["id"])
                    if await self._repository.set_listing_id_if_absent(prop.id, new_id, _utcnow()):
                        listing_id, published, created = new_id, False, True
                    else:
                        # Linked by a concurrent create; the new listing stays orphaned
                        logger.warning(
                            "portal.listing_link_conflict",
                            property_id=property_id,
                            listing_id=new_id,
                        )
                        prop = await self._get_property(property_id)
                        listing_id = prop.external_listing_id
                        published = prop.external_published

                if created:
                    title = "Property Published to PF"
                    message = f"Property {prop.reference or prop.id} was created on Property Finder."
                else:
                    existing = await self._fetch_listing_for_merge(listing_id)
                    await self._portal.update_listing(listing_id, merge_listing(existing, payload))
                    title = "Property Updated on PF"
                    message = f"Property {prop.reference or prop.id} was updated on Property Finder."

                fields = await self._location_fields(location_id)
                fields["external_synced_at"] = _utcnow()
                fields["external_published"] = await self._set_publish_state(
                    listing_id, published, publish
                )
                updated = await self._repository.update_property(prop.id, fields)
            except _TRANSPORT_ERRORS as exc:
                tracker["status"] = "error"
                context = _error_context(exc)
                logger.error("portal.update_sync_failed", property_id=property_id, **context)
                if notify:
                    await self._notifications.notify(
                        NotificationType.ERROR,
                        "Failed to Update Property on PF",
                        f"Property {prop.reference or prop.id} could not be synced: {context['error']}",
                    )
                if isinstance(exc, PortalAPIError):
                    raise PortalSyncError.from_api_error(
                        exc, "Failed to sync property to Property Finder"
                    ) from exc
                raise PortalSyncError(502, f"Property Finder is unreachable: {exc}") from exc

        logger.info("portal.update_sync_complete", property_id=property_id, listing_id=listing_id)
        if notify:
            await self._notifications.notify(NotificationType.SUCCESS, title, message)
        return updated or prop

    async def _fetch_listing_for_merge(self, listing_id: str) -> dict[str, Any] | None:
        """Fetch the current listing; None (local data only) when that fails."""
        try:
            raw = await self._portal.get_listing(listing_id)
            if raw is None:
                return None
            return PortalListing.model_validate(raw).to_api()
        except (*_TRANSPORT_ERRORS, ValidationError) as exc:
            logger.warning(
                "portal.fetch_before_update_failed",
                listing_id=listing_id,
                **_error_context(exc),
            )
            return None

    # ── Publish / Unpublish ─────────────────────────────────────────────────

    async def publish(self, property_id: str) -> PropertyRead:
        """Publish the property's listing, syncing it first when it has none."""
        prop = await self._get_property(property_id)
        if not prop.external_listing_id:
            prop = await self.update_sync(property_id)
        try:
            await self._portal.publish_listing(prop.external_listing_id)
        except PortalAPIError as exc:
            raise PortalSyncError.from_api_error(exc, "Failed to publish listing") from exc
        logger.info("portal.published", property_id=property_id, listing_id=prop.external_listing_id)
        return await self._repository.update_property(prop.id, {"external_published": True}) or prop

    async def unpublish(self, property_id: str) -> PropertyRead:
        prop = await self._get_property(property_id)
        if not prop.external_listing_id:
            raise ListingNotFoundError(property_id)
        try:
            await self._portal.unpublish_listing(prop.external_listing_id)
        except PortalAPIError as exc:
            raise PortalSyncError.from_api_error(exc, "Failed to unpublish listing") from exc
        logger.info("portal.unpublished", property_id=property_id, listing_id=prop.external_listing_id)
        return await self._repository.update_property(prop.id, {"external_published": False}) or prop

    # ── Verification ────────────────────────────────────────────────────────

    async def check_verification_eligibility(self, property_id: str) -> VerificationEligibility:
        """Eligibility with local pre-checks; never raises for portal failures."""
        prop = await self._get_property(property_id)
        if not prop.external_listing_id:
            return VerificationEligibility(
                eligible=False, reason="Property is not synced to Property Finder"
            )
        if not prop.external_published:
            return VerificationEligibility(
                eligible=False,
                reason="Property must be published on Property Finder before verification",
            )
        if not await self._agent_profile_id(prop):
            return VerificationEligibility(
                eligible=False, reason="Assigned agent is not synced with Property Finder"
            )

        try:
            raw = await self._portal.check_verification_eligibility(prop.external_listing_id)
            response = EligibilityResponse.model_validate(raw or {})
        except (*_TRANSPORT_ERRORS, ValidationError) as exc:
            logger.warning("portal.eligibility_check_failed", property_id=property_id, **_error_context(exc))
            return VerificationEligibility(eligible=False, reason="Could not check eligibility")

        eligible = response.eligible and not response.error
        return VerificationEligibility(
            eligible=eligible,
            auto_submit=response.auto_submit,
            reason=None if eligible else eligibility_message(response),
            details=raw or {},
        )

    async def submit_verification(self, property_id: str) -> VerificationSubmission:
        """Submit a published listing for portal verification.

        Raises:
            ListingNotFoundError: The property has no listing.
            PortalSyncError: Not published, not eligible (portal reasons joined),
                agent without a portal profile, or a portal error.
        """
        prop = await self._get_property(property_id)
        if not prop.external_listing_id:
            raise ListingNotFoundError(property_id)
        if not prop.external_published:
            raise PortalSyncError(
                400, "Property must be published on Property Finder before verification"
            )

        try:
            raw = await self._portal.check_verification_eligibility(prop.external_listing_id)
        except PortalAPIError as exc:
            raise PortalSyncError.from_api_error(exc, "Failed to check verification eligibility") from exc
        eligibility = EligibilityResponse.model_validate(raw or {})
        if not eligibility.eligible or eligibility.error:
            raise PortalSyncError(400, eligibility_message(eligibility), raw)

        profile_id = await self._agent_profile_id(prop)
        if not profile_id:
            raise PortalSyncError(
                400, "Assigned agent must be synced with Property Finder before verification"
            )

        try:
            result = await self._portal.submit_listing_verification(
                prop.external_listing_id, int(profile_id)
            )
        except PortalAPIError as exc:
            raise PortalSyncError.from_api_error(exc, "Failed to submit verification") from exc

        await self._repository.update_property(prop.id, {"external_verification_status": "pending"})
        submission_id = (result or {}).get("submissionId") or (result or {}).get("id")
        logger.info("portal.verification_submitted", property_id=property_id, submission_id=submission_id)
        return VerificationSubmission(
            success=True,
            message="Property submitted for verification",
            submission_id=str(submission_id) if submission_id is not None else None,
        )

    # ── Listing Details ─────────────────────────────────────────────────────

    async def _fetch_listing(self, prop: PropertyRead) -> PortalListing:
        if not prop.external_listing_id:
            raise ListingNotFoundError(prop.id)
        try:
            raw = await self._portal.get_listing(prop.external_listing_id)
        except PortalAPIError as exc:
            raise PortalSyncError.from_api_error(exc, "Failed to fetch listing") from exc
        if raw is None:
            raise PortalSyncError(404, f"Listing {prop.external_listing_id} not found on Property Finder")
        return PortalListing.model_validate(raw)

    async def sync_details_from_portal(self, property_id: str) -> PropertyRead:
        """Pull location, quality score and verification status from the portal."""
        prop = await self._get_property(property_id)
        listing = await self._fetch_listing(prop)
        imported = from_portal_listing(listing)

        fields: dict[str, Any] = {"external_synced_at": _utcnow()}
        location_id = imported["external_location_id"]
        if location_id:
            fields["external_location_id"] = location_id
            fields["external_location_path"] = (
                build_location_path(listing.location) or await self._locations.resolve(location_id)
            )
        if imported["external_quality_score"] is not None:
            fields["external_quality_score"] = imported["external_quality_score"]
        if imported["external_verification_status"]:
            fields["external_verification_status"] = imported["external_verification_status"]

        logger.info("portal.details_synced", property_id=property_id, fields=sorted(fields))
        return await self._repository.update_property(prop.id, fields) or prop

    async def get_portal_listing(self, property_id: str) -> PortalListingView:
        """Portal listing with its quality score, or the local score on failure."""
        prop = await self._get_property(property_id)
        try:
            listing = await self._fetch_listing(prop)
        except (PortalSyncError, ValidationError, httpx.HTTPError) as exc:
            logger.info("portal.listing_unavailable", property_id=property_id, error=str(exc))
            return PortalListingView(listing=None, quality_score=local_quality_score(prop))

        quality = from_portal_listing(listing)["external_quality_score"]
        score = (
            QualityScore(value=round(quality), source="portal")
            if quality is not None
            else local_quality_score(prop)
        )
        return PortalListingView(listing=listing.to_api(), quality_score=score)

    async def search_locations(self, term: str) -> list[dict[str, Any]]:
        if len(term.strip()) < 2:
            return []
        try:
            return await self._portal.search_locations(term.strip())
        except PortalAPIError as exc:
            raise PortalSyncError.from_api_error(exc, "Location search failed") from exc

    # ── Location Backfill ───────────────────────────────────────────────────

    async def backfill_location_paths(self) -> LocationBackfillResult:
        """Resolve and store paths for properties with a location id but no path."""
        props = await self._repository.list_missing_location_path()
        result = LocationBackfillResult(total=len(props))
        for prop in props:
            path = await self._locations.resolve(prop.external_location_id)
            if path:
                await self._repository.update_property(prop.id, {"external_location_path": path})
                result.updated += 1
            else:
                result.failed += 1
                result.errors.append(
                    f"{prop.reference or prop.id}: location {prop.external_location_id} could not be resolved"
                )
        logger.info("portal.location_paths_backfilled", **result.model_dump(exclude={"errors"}))
        return result

    async def fetch_missing_location_paths(self) -> LocationBackfillResult:
        """Fill in location id and path for synced properties that lack them."""
        props = await self._repository.list_missing_location_id()
        result = LocationBackfillResult(total=len(props))
        for prop in props:
            try:
                listing = await self._fetch_listing(prop)
                location_id = (listing.location or {}).get("id")
                if location_id is None:
                    raise PortalSyncError(422, "listing has no location")
                location_id = int(location_id)
                path = build_location_path(listing.location) or await self._locations.resolve(location_id)
                await self._repository.update_property(
                    prop.id,
                    {"external_location_id": location_id, "external_location_path": path},
                )
                result.updated += 1
            except (PortalSyncError, ValidationError, httpx.HTTPError) as exc:
                result.failed += 1
                result.errors.append(f"{prop.reference or prop.id}: {exc}")
        logger.info("portal.missing_locations_fetched", **result.model_dump(exclude={"errors"}))
        return result

    # ── Bulk Export ─────────────────────────────────────────────────────────

    async def sync_all_to_portal(self) -> SyncResult:
        """Update-sync every active property in fixed windows.

        Returns:
            SyncResult with total/synced/failed counts.
        """
        async with track_sync_operation("bulk_export") as tracker:
            property_ids = await self._repository.list_active_property_ids()
            result = SyncResult(total=len(property_ids))

            for start in range(0, len(property_ids), self._export_chunk_size):
                if start:
                    await asyncio.sleep(self._export_chunk_delay)
                chunk = property_ids[start:start + self._export_chunk_size]
                outcomes = await asyncio.gather(*(self._export_one(pid) for pid in chunk))
                result.synced += sum(outcomes)
                result.failed += len(outcomes) - sum(outcomes)

            if result.failed:
                tracker["status"] = "partial"
            logger.info("portal.bulk_export_complete", **result.model_dump())
            return result

    async def _export_one(self, property_id: str) -> bool:
        try:
            await self.update_sync(property_id, notify=False)
            return True
        except Exception as exc:
            logger.error("portal.bulk_export_item_failed", property_id=property_id, **_error_context(exc))
            return False

    # ── Bulk Import ─────────────────────────────────────────────────────────

    async def _fetch_all_pages(self, fetch: Any, results_key: str) -> list[dict[str, Any]]:
        """Collect every page; stops at the page limit or on the first failure."""
        items: list[dict[str, Any]] = []
        page = 1
        while page <= self._import_max_pages:
            try:
                data = await fetch(page, self._import_page_size)
            except _TRANSPORT_ERRORS as exc:
                logger.error("portal.page_fetch_failed", page=page, fetched=len(items), **_error_context(exc))
                break
            results = (data or {}).get(results_key) or []
            items.extend(results)

            total_pages = ((data or {}).get("pagination") or {}).get("totalPages")
            if not results:
                break
            if total_pages:
                if page >= total_pages:
                    break
            elif len(results) < self._import_page_size:
                break
            page += 1
        return items

    async def sync_from_portal(self) -> SyncResult:
        """Import every portal listing into the catalog.

        Lookups (locations, agents, existing listings) are loaded once up
        front; listings are then upserted in concurrent windows.
        """
        async with track_sync_operation("bulk_import") as tracker:
            raw_listings = await self._fetch_all_pages(self._portal.get_listings, "results")
            result = SyncResult(total=len(raw_listings))

            # Keyed by id: shifting pagination can return a listing twice
            by_id: dict[str, PortalListing] = {}
            for raw in raw_listings:
                try:
                    listing = PortalListing.model_validate(raw)
                except ValidationError as exc:
                    result.failed += 1
                    logger.error("portal.import_listing_invalid", listing_id=raw.get("id"), error=str(exc))
                    continue
                if listing.id in by_id:
                    result.total -= 1
                    logger.info("portal.import_duplicate_listing", listing_id=listing.id)
                by_id[listing.id] = listing
            listings = list(by_id.values())

            await self._locations.warm([
                int(listing.location["id"])
                for listing in listings
                if listing.location
                and listing.location.get("id") is not None
                and build_location_path(listing.location) is None
            ])
            agent_by_profile, agent_by_user = await self._repository.agent_lookup_maps()
            existing = await self._repository.listing_id_map()
            await self._import_amenities(listings)

            for start in range(0, len(listings), self._import_chunk_size):
                chunk = listings[start:start + self._import_chunk_size]
                outcomes = await asyncio.gather(*(
                    self._import_one(listing, agent_by_profile, agent_by_user, existing)
                    for listing in chunk
                ))
                result.synced += sum(outcomes)
                result.failed += len(outcomes) - sum(outcomes)

            if result.failed:
                tracker["status"] = "partial"
            logger.info("portal.bulk_import_complete", **result.model_dump())
            return result

    async def _import_amenities(self, listings: list[PortalListing]) -> None:
        names = sorted({
            name
            for listing in listings
            for name in from_portal_listing(listing)["amenities"]
            if name
        })
        for start in range(0, len(names), self._import_chunk_size):
            await self._repository.ensure_amenities(names[start:start + self._import_chunk_size])

    async def _import_one(
        self,
        listing: PortalListing,
        agent_by_profile: dict[str, str],
        agent_by_user: dict[str, str],
        existing: dict[str, str],
    ) -> bool:
        try:
            fields = from_portal_listing(
                listing, agent_by_profile=agent_by_profile, agent_by_user=agent_by_user
            )
            fields["external_location_path"] = build_location_path(
                listing.location
            ) or await self._locations.resolve(fields["external_location_id"])
            fields["external_synced_at"] = _utcnow()

            property_id = existing.get(listing.id)
            if property_id:
                await self._repository.update_property(property_id, fields)
            else:
                fields["client_name"] = IMPORT_CLIENT_NAME
                created = await self._repository.create_property(fields)
                existing[listing.id] = created.id
            return True
        except Exception as exc:
            logger.error("portal.import_listing_failed", listing_id=listing.id, **_error_context(exc))
            return False

    # ── Agent Import ────────────────────────────────────────────────────────

    async def sync_agents_from_portal(self) -> SyncResult:
        """Import portal users as agents, matched by email."""
        async with track_sync_operation("agent_import") as tracker:
            users = await self._fetch_all_pages(self._portal.get_users, "data")
            result = SyncResult(total=len(users))
            for user in users:
                try:
                    agent = agent_from_portal_user(user)
                    if agent is None:
                        raise ValueError("portal user has no email")
                    await self._repository.upsert_agent_by_email(agent)
                    result.synced += 1
                except Exception as exc:
                    result.failed += 1
                    logger.error("portal.agent_import_failed", user_id=user.get("id"), error=str(exc))
            if result.failed:
                tracker["status"] = "partial"
            logger.info("portal.agent_import_complete", **result.model_dump())
            return result
