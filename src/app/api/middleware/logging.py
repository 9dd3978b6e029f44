"""Structlog configuration and request logging middleware.

Every request is logged with method, path, status_code, duration_ms and a
request_id (taken from an incoming X-Request-ID header or generated, and
echoed back on the response). The request_id is bound to structlog's
contextvars, so portal sync events emitted while serving the request carry
it as well.

Portal error bodies and auth payloads are logged verbatim elsewhere, so a
processor masks credential-bearing keys before rendering.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REDACTED = "***"
SECRET_KEYS = frozenset(
    {"apikey", "api_key", "apisecret", "api_secret", "accesstoken", "access_token", "authorization"}
)

# Probe and scrape endpoints, logged at debug level only
QUIET_PATHS = frozenset({"/metrics", "/health", "/health/ready"})


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in SECRET_KEYS else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor masking API keys, secrets and tokens at any depth."""
    return _redact(event_dict)


def configure_structlog() -> None:
    """Configure structlog: JSON in production, console renderer otherwise."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its duration under a bound request_id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        path = request.url.path
        started = time.monotonic()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "request_error",
                method=request.method,
                path=path,
                status_code=500,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        elif path in QUIET_PATHS:
            log = logger.debug
        else:
            log = logger.info

        log(
            "request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
            request_id=request_id,
        )
        return response
