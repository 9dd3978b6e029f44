"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness checks
database connectivity and whether the sync services were wired at startup.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.app.config import get_settings
from src.app.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and service wiring. Returns check results dict."""
    checks: dict = {"database": "ok", "sync_engine": "ok", "scheduler": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if getattr(request.app.state, "sync_engine", None) is None:
        checks["sync_engine"] = "unavailable"
    if getattr(request.app.state, "sync_scheduler", None) is None:
        checks["scheduler"] = "disabled"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the database and sync engine are up, else 503."""
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("sync_engine") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
