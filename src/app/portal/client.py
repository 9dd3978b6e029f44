"""Async HTTP client for the Property Finder Atlas API.

Provides PropertyFinderClient, the HTTP implementation of ListingPortal.
Requests carry a bearer token obtained from ``POST /auth/token`` with the
API key/secret and cached until shortly before it expires.

Transient failures (connection errors, timeouts, 401, 429 and 5xx) are
retried with tenacity: 3 attempts, exponential backoff 1-10s. A 401 drops
the cached token so the retry re-authenticates. Other non-2xx responses
raise PortalAPIError immediately with the decoded response body.

Creating a listing and submitting a verification are not idempotent: a
timeout or 5xx may arrive after the portal applied the request. Those calls
are only retried when the request provably was not applied (connection
not established, 401, 429). Missing credentials are never retried.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.app.core.monitoring import portal_api_requests_total
from src.app.portal.adapter import ListingPortal
from src.app.portal.credentials import CredentialProvider
from src.app.portal.errors import PortalAPIError, PortalCredentialsError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://atlas.propertyfinder.com/v1"


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, PortalCredentialsError):
        return False
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, PortalAPIError):
        return exc.status_code in (401, 429) or exc.status_code >= 500
    return False


def _is_unapplied(exc: BaseException) -> bool:
    """True when the portal cannot have acted on the request."""
    if isinstance(exc, PortalCredentialsError):
        return False
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return True
    if isinstance(exc, PortalAPIError):
        return exc.status_code in (401, 429)
    return False


_portal_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)

_no_replay_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_unapplied),
    reraise=True,
)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class PropertyFinderClient(ListingPortal):
    """Async client for the Property Finder listings, locations and users APIs.

    Args:
        credentials: Resolves the API key/secret.
        base_url: API root, e.g. ``https://atlas.propertyfinder.com/v1``.
        timeout_mutate: Timeout for create/update/publish calls.
        timeout_read: Timeout for get/list/search calls.
    """

    # Timeouts per operation type
    TIMEOUT_MUTATE = 30.0
    TIMEOUT_READ = 10.0

    # Renew the token this many seconds before it expires
    TOKEN_EXPIRY_MARGIN = 60

    def __init__(
        self,
        credentials: CredentialProvider,
        base_url: str = DEFAULT_BASE_URL,
        timeout_mutate: float | None = None,
        timeout_read: float | None = None,
    ) -> None:
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout_mutate = timeout_mutate or self.TIMEOUT_MUTATE
        self._timeout_read = timeout_read or self.TIMEOUT_READ
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=timeout,
        )

    def invalidate_token(self) -> None:
        """Forget the cached access token (e.g. after a credential change)."""
        self._token = None
        self._token_expires_at = 0.0

    async def _access_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            credentials = await self._credentials.get()
            if not credentials.configured:
                raise PortalCredentialsError()

            async with self._client(self._timeout_read) as client:
                response = await client.request(
                    "POST",
                    f"{self._base_url}/auth/token",
                    json={"apiKey": credentials.api_key, "apiSecret": credentials.api_secret},
                )
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                body = _response_body(response)
                logger.error("portal.auth_failed", status_code=response.status_code, body=body)
                raise PortalAPIError(
                    response.status_code, body, "Property Finder authentication failed"
                ) from exc

            data = response.json()
            self._token = data["accessToken"]
            expires_in = int(data.get("expiresIn") or 1800)
            self._token_expires_at = time.monotonic() + max(expires_in - self.TOKEN_EXPIRY_MARGIN, 0)
            logger.info("portal.token_acquired", expires_in=expires_in)
            return self._token

    async def _send(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Send an authenticated request and decode the JSON response.

        Returns:
            Decoded JSON body, ``{}`` for empty bodies, or None on a 404 when
            ``allow_not_found`` is set.
        """
        token = await self._access_token()
        async with self._client(timeout) as client:
            response = await client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )

        portal_api_requests_total.labels(
            method=method, status_code=str(response.status_code)
        ).inc()

        if allow_not_found and response.status_code == 404:
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = _response_body(response)
            if response.status_code == 401:
                self.invalidate_token()
            logger.warning(
                "portal.api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=body,
            )
            raise PortalAPIError(response.status_code, body) from exc

        if not response.content:
            return {}
        return response.json()

    @_portal_retry
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._send(method, path, **kwargs)

    @_no_replay_retry
    async def _request_once(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a non-idempotent request; never resent once it may have been applied."""
        return await self._send(method, path, **kwargs)

    # ── Locations ───────────────────────────────────────────────────────────

    async def search_locations(self, term: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", "/locations", timeout=self._timeout_read, params={"search": term}
        )
        return list((data or {}).get("data") or [])

    async def get_location(self, location_id: int) -> dict[str, Any] | None:
        data = await self._request(
            "GET",
            "/locations",
            timeout=self._timeout_read,
            params={"filter[id]": location_id},
            allow_not_found=True,
        )
        if not data:
            return None
        results = data.get("data") or []
        return results[0] if results else None

    # ── Listings ────────────────────────────────────────────────────────────

    async def create_listing(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a draft listing.

        POST /listings with the full listing payload.

        Returns:
            Created listing including its ``id``.
        """
        data = await self._request_once(
            "POST", "/listings", timeout=self._timeout_mutate, json=payload
        )
        logger.info(
            "portal.listing_created",
            listing_id=data.get("id"),
            reference=payload.get("reference"),
        )
        return data

    async def update_listing(self, listing_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Replace a listing (PUT /listings/{id}); this is not a partial patch."""
        data = await self._request(
            "PUT", f"/listings/{listing_id}", timeout=self._timeout_mutate, json=payload
        )
        logger.info("portal.listing_updated", listing_id=listing_id)
        return data

    async def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        return await self._request(
            "GET",
            f"/listings/{listing_id}",
            timeout=self._timeout_read,
            allow_not_found=True,
        )

    async def get_listings(self, page: int, per_page: int) -> dict[str, Any]:
        return await self._request(
            "GET",
            "/listings",
            timeout=self._timeout_read,
            params={"page": page, "perPage": per_page},
        )

    async def publish_listing(self, listing_id: str) -> dict[str, Any]:
        data = await self._request(
            "POST", f"/listings/{listing_id}/publish", timeout=self._timeout_mutate
        )
        logger.info("portal.listing_published", listing_id=listing_id)
        return data

    async def unpublish_listing(self, listing_id: str) -> dict[str, Any]:
        data = await self._request(
            "POST", f"/listings/{listing_id}/unpublish", timeout=self._timeout_mutate
        )
        logger.info("portal.listing_unpublished", listing_id=listing_id)
        return data

    # ── Verification ────────────────────────────────────────────────────────

    async def check_verification_eligibility(self, listing_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/listings/{listing_id}/verification-eligibility",
            timeout=self._timeout_read,
        )

    async def submit_listing_verification(
        self, listing_id: str, agent_profile_id: int
    ) -> dict[str, Any]:
        data = await self._request_once(
            "POST",
            "/listing-verifications",
            timeout=self._timeout_mutate,
            json={"listingId": listing_id, "publicProfileId": agent_profile_id},
        )
        logger.info(
            "portal.verification_submitted",
            listing_id=listing_id,
            submission_id=data.get("submissionId") or data.get("id"),
        )
        return data

    # ── Users ───────────────────────────────────────────────────────────────

    async def get_users(self, page: int, per_page: int) -> dict[str, Any]:
        return await self._request(
            "GET",
            "/users",
            timeout=self._timeout_read,
            params={"page": page, "perPage": per_page},
        )
