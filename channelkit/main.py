"""
ChannelKit Onboarding Service - Main Application Entry Point
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from channelkit import __version__
from channelkit.config import settings
from channelkit.db import init_db
from channelkit.api import (
    setup_router,
    channels_router,
    webhooks_router,
    build_channel_services,
    get_channel_services,
    set_channel_services,
)
from channelkit.errors import (
    ChannelNotFound,
    MalformedRemoteData,
    ProbeSuperseded,
    RemoteRejection,
    TransportError,
    ValidationError,
)
from channelkit.scheduler import SyncScheduler
from channelkit.structured_logging import (
    api_log,
    configure_logging,
    generate_request_id,
    set_request_context,
)

logger = logging.getLogger(__name__)

# Global start time for uptime tracking
_app_start_time = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    global _app_start_time
    _app_start_time = time.time()

    # Startup
    configure_logging(settings.log_level, settings.structured_logging)
    logger.info("ChannelKit onboarding service starting up...")
    await init_db()
    logger.info("Database initialized")

    from channelkit.channels.credential_store import SqlKeyValueBackend
    from channelkit.channels.repository import ChannelRepository
    from channelkit.db.database import async_session_maker
    from channelkit.services.backend_client import BackendClient

    services = build_channel_services(
        backend=SqlKeyValueBackend(settings.sync_database_url),
        client=BackendClient(),
        repository=ChannelRepository(async_session_maker),
    )
    loaded = await services.registry.load()
    set_channel_services(services)
    logger.info("Channel registry ready (%d channel(s), backend %s)", loaded, settings.backend_base_url)

    sync_scheduler = SyncScheduler(services.reconciler, settings.sync_interval_minutes)
    if settings.sync_on_startup:
        await sync_scheduler.run_sync()
    sync_scheduler.start()

    yield

    # Shutdown
    logger.info("ChannelKit shutting down...")
    sync_scheduler.shutdown()
    try:
        await services.aclose()
    finally:
        set_channel_services(None)
        backend = services.store.backend
        if isinstance(backend, SqlKeyValueBackend):
            backend.dispose()
    logger.info("ChannelKit shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    description="Messaging channel onboarding: credentials, setup wizard, webhooks, connection tests and sync",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log record of a request with its correlation id."""
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    set_request_context(request_id=request_id)
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    api_log.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        {"duration_ms": round((time.perf_counter() - started) * 1000, 1)},
    )
    return response


# ── Error mapping ─────────────────────────────────────────────

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "platform": exc.platform, "missing_fields": exc.missing_fields},
    )


@app.exception_handler(ChannelNotFound)
async def channel_not_found_handler(request: Request, exc: ChannelNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ProbeSuperseded)
async def superseded_handler(request: Request, exc: ProbeSuperseded):
    return JSONResponse(
        status_code=409,
        content={"detail": "Connection test superseded by a newer request"},
    )


@app.exception_handler(TransportError)
@app.exception_handler(RemoteRejection)
@app.exception_handler(MalformedRemoteData)
async def remote_error_handler(request: Request, exc: Exception):
    logger.warning("Remote failure surfaced to client: %s", exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Include routers
app.include_router(setup_router, prefix=settings.api_prefix)
app.include_router(channels_router, prefix=settings.api_prefix)
app.include_router(webhooks_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "name": settings.app_name,
        "status": "healthy",
        "version": __version__,
        "platforms": ["LINE", "WhatsApp", "Instagram", "Facebook"],
    }


@app.get("/health")
async def health():
    """Detailed health check with registry and database state."""
    db_status = "connected"
    try:
        from sqlalchemy import text
        from channelkit.db.database import async_session_maker
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"error: {e}"

    try:
        services = get_channel_services()
        stats = services.registry.stats()
        registry_status = "ready"
        credentials = {
            "schema_version": services.store.schema_version,
            "user_id_source": services.identity.source,
        }
    except HTTPException:
        stats = None
        registry_status = "not initialized"
        credentials = None

    return {
        "status": "healthy" if db_status == "connected" and stats is not None else "degraded",
        "database": db_status,
        "registry": registry_status,
        "channels": stats,
        "credentials": credentials,
        "backend": settings.backend_base_url,
        "uptime_seconds": round(time.time() - _app_start_time, 1) if _app_start_time else None,
    }
