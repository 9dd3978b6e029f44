"""Property Finder credential resolution.

Credentials come from the ``property_finder`` integration config row when one
is stored and enabled; any value it lacks falls back to the PF_* settings.
The resolved value is cached until ``invalidate()`` is called, which the
integration config endpoint does after every change.
"""

from __future__ import annotations

import asyncio

import structlog
from pydantic import BaseModel

from src.app.config import Settings
from src.app.properties.repository import IntegrationConfigRepository

logger = structlog.get_logger(__name__)

PROVIDER = "property_finder"


class PortalCredentials(BaseModel):
    api_key: str = ""
    api_secret: str = ""
    company_license_number: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret)


class CredentialProvider:
    """Lazily resolves and caches portal credentials.

    Args:
        repository: Stored integration configs.
        settings: Application settings supplying the env fallbacks.
    """

    def __init__(self, repository: IntegrationConfigRepository, settings: Settings) -> None:
        self._repository = repository
        self._settings = settings
        self._cached: PortalCredentials | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> PortalCredentials:
        if self._cached is not None:
            return self._cached
        async with self._lock:
            if self._cached is None:
                self._cached = await self._load()
        return self._cached

    def invalidate(self) -> None:
        self._cached = None
        logger.info("credentials.invalidated", provider=PROVIDER)

    async def _load(self) -> PortalCredentials:
        stored = await self._repository.get(PROVIDER) or {}
        credentials = PortalCredentials(
            api_key=stored.get("apiKey") or self._settings.PF_API_KEY,
            api_secret=stored.get("apiSecret") or self._settings.PF_API_SECRET,
            company_license_number=(
                stored.get("companyOrn")
                or stored.get("orn")
                or self._settings.PF_COMPANY_LICENSE_NUMBER
            ),
        )
        logger.info(
            "credentials.loaded",
            provider=PROVIDER,
            source="integration_config" if stored else "settings",
            configured=credentials.configured,
        )
        return credentials
