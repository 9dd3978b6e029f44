"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, lifespan
events for database initialization and portal sync wiring, and the v1 API
router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.config import get_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response
from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and portal sync on startup, stop on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # ── Portal Sync Initialization ──────────────────────────────────────
    # Each stage is wrapped in its own try/except so a failure leaves the
    # catalog API up and the dependent endpoints answering 503.

    app.state.sync_jobs = None
    app.state.sync_scheduler = None

    try:
        from src.app.portal.client import PropertyFinderClient
        from src.app.portal.credentials import CredentialProvider
        from src.app.portal.locations import LocationCache
        from src.app.portal.notifications import NotificationService
        from src.app.portal.sync import PortalSyncEngine
        from src.app.properties.repository import (
            IntegrationConfigRepository,
            LocationCacheRepository,
            NotificationRepository,
            PropertyRepository,
        )

        property_repository = PropertyRepository(session_factory=get_session)
        integration_repository = IntegrationConfigRepository(session_factory=get_session)
        credential_provider = CredentialProvider(integration_repository, settings)
        portal_client = PropertyFinderClient(
            credentials=credential_provider,
            base_url=settings.PF_BASE_URL,
            timeout_mutate=settings.PF_REQUEST_TIMEOUT,
            timeout_read=settings.PF_READ_TIMEOUT,
        )
        location_cache = LocationCache(
            portal_client,
            LocationCacheRepository(session_factory=get_session),
            batch_size=settings.SYNC_LOCATION_BATCH_SIZE,
        )
        notification_service = NotificationService(
            NotificationRepository(session_factory=get_session)
        )
        sync_engine = PortalSyncEngine(
            property_repository,
            portal_client,
            location_cache,
            notification_service,
            credential_provider,
            export_chunk_size=settings.SYNC_EXPORT_CHUNK_SIZE,
            export_chunk_delay=settings.SYNC_EXPORT_CHUNK_DELAY_SECONDS,
            import_chunk_size=settings.SYNC_IMPORT_CHUNK_SIZE,
            import_page_size=settings.SYNC_IMPORT_PAGE_SIZE,
            import_max_pages=settings.SYNC_IMPORT_MAX_PAGES,
        )

        app.state.property_repository = property_repository
        app.state.integration_repository = integration_repository
        app.state.credential_provider = credential_provider
        app.state.portal_client = portal_client
        app.state.location_cache = location_cache
        app.state.notification_service = notification_service
        app.state.sync_engine = sync_engine
        log.info("portal.sync_engine_initialized", base_url=settings.PF_BASE_URL)
    except Exception:
        log.warning("portal.sync_engine_init_failed", exc_info=True)
        app.state.sync_engine = None
        app.state.location_cache = None
        app.state.notification_service = None
        app.state.credential_provider = None
        app.state.integration_repository = None
        app.state.portal_client = None

    # Per-property sync jobs and the catalog write service
    try:
        from src.app.portal.jobs import SyncJobQueue
        from src.app.properties.service import PropertyService

        if app.state.sync_engine is None:
            raise RuntimeError("sync engine unavailable")
        sync_jobs = SyncJobQueue(
            app.state.sync_engine,
            app.state.notification_service,
            max_retries=settings.SYNC_JOB_MAX_RETRIES,
        )
        sync_jobs.start()
        app.state.sync_jobs = sync_jobs
        app.state.property_service = PropertyService(app.state.property_repository, sync_jobs)
        log.info("portal.sync_jobs_initialized", max_retries=settings.SYNC_JOB_MAX_RETRIES)
    except Exception:
        log.warning("portal.sync_jobs_init_failed", exc_info=True)
        app.state.property_service = None

    # Periodic bulk sync
    if settings.SYNC_SCHEDULER_ENABLED and app.state.sync_engine is not None:
        try:
            from src.app.portal.scheduler import PortalSyncScheduler

            scheduler = PortalSyncScheduler(
                app.state.sync_engine,
                app.state.notification_service,
                timezone=settings.SYNC_TIMEZONE,
                interval_hours=settings.SYNC_INTERVAL_HOURS,
                warning_minutes=settings.SYNC_WARNING_MINUTES,
            )
            if scheduler.start():
                app.state.sync_scheduler = scheduler
        except Exception:
            log.warning("portal.scheduler_init_failed", exc_info=True)
    else:
        log.info("portal.scheduler_disabled")

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    sync_jobs = getattr(app.state, "sync_jobs", None)
    if sync_jobs is not None:
        await sync_jobs.stop()

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Portal Sync API",
        version="0.1.0",
        description="Property catalog with Property Finder listing sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Include v1 API router (health, properties, portal)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
