"""Portal sync error types.

- PortalAPIError: non-2xx response from the portal API (status + decoded body)
- PortalCredentialsError: credentials missing, raised before any request
- PortalSyncError: structured failure of a user-triggered sync operation,
  carrying the HTTP status the API layer should answer with
"""

from __future__ import annotations

from typing import Any


class PortalAPIError(Exception):
    """The portal API answered with a non-success status."""

    def __init__(self, status_code: int, body: Any = None, message: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Property Finder API error {status_code}")


class PortalCredentialsError(PortalAPIError):
    """No API key/secret is configured; retrying cannot help."""

    def __init__(self) -> None:
        super().__init__(401, None, "Property Finder credentials are not configured")


class PortalSyncError(Exception):
    """A sync operation failed in a way the caller should see."""

    def __init__(self, status_code: int, message: str, body: Any = None) -> None:
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(message)

    @classmethod
    def from_api_error(cls, exc: PortalAPIError, message: str) -> PortalSyncError:
        return cls(exc.status_code, message, exc.body)


class PropertyNotFoundError(PortalSyncError):
    def __init__(self, property_id: str) -> None:
        super().__init__(404, f"Property {property_id} not found")


class ListingNotFoundError(PortalSyncError):
    """The property has no portal listing yet."""

    def __init__(self, property_id: str) -> None:
        super().__init__(404, f"Property {property_id} is not synced to Property Finder")
