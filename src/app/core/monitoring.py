"""Prometheus metrics for HTTP requests and portal sync.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_sync_operation(): Context manager for sync operation metrics
- portal_api_requests_total / portal_sync_jobs_total: counters used by the
  portal client and the sync job queue
- get_metrics_response(): Response body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Portal Sync Metrics ──────────────────────────────────────────────────────

portal_api_requests_total = Counter(
    "portal_api_requests_total",
    "Requests sent to the listing portal API",
    ["method", "status_code"],
)

portal_sync_operations_total = Counter(
    "portal_sync_operations_total",
    "Portal sync operations by outcome",
    ["operation", "status"],
)

portal_sync_duration_seconds = Histogram(
    "portal_sync_duration_seconds",
    "Portal sync operation duration in seconds",
    ["operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0),
)

portal_sync_jobs_total = Counter(
    "portal_sync_jobs_total",
    "Queued per-property sync jobs by outcome",
    ["kind", "status"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        # Prefer the route template ("/properties/{property_id}") to keep cardinality low
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or endpoint

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sync Metrics Helper ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_sync_operation(operation: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that records duration and outcome of a sync operation.

    Usage:
        async with track_sync_operation("bulk_export") as tracker:
            result = await run_export()
            tracker["status"] = "partial" if result.failed else "success"

    The status defaults to "success", becomes "error" when the block raises,
    and may be overridden through the yielded dict.
    """
    tracker: dict[str, Any] = {"status": "success"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["status"] = "error"
        raise
    finally:
        portal_sync_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start_time
        )
        portal_sync_operations_total.labels(
            operation=operation,
            status=tracker["status"],
        ).inc()


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
