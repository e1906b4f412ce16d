"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from app.api import automation, diagnostics, predictions, stops
from app.config import settings
from app.core.actions import ActionExecutor
from app.core.audit import FetchAuditLog
from app.core.automation import AutomationConfig, AutomationEngine
from app.core.errors import UpstreamFetchError
from app.core.mbta_client import MbtaClient
from app.core.prediction_cache import PredictionCache
from app.core.refresher import BackgroundRefresher
from app.core.scheduler import create_scheduler
from app.core.stop_store import StopStore
from app.db.session import async_session, engine
from app.models.base import Base
from app.models import tables  # noqa: F401

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Initialize services
    mbta = MbtaClient()
    stop_store = StopStore(async_session)
    cache = PredictionCache(
        mbta,
        ttl_ms=round(settings.cache_ttl_seconds * 1000),
        stale_tolerance_ms=round(settings.cache_stale_seconds * 1000),
        fetch_timeout_ms=round(settings.fetch_timeout_seconds * 1000),
        limit=settings.result_limit,
        audit=FetchAuditLog(async_session),
    )
    refresher = BackgroundRefresher(
        cache,
        stop_store,
        poll_interval=settings.refresh_interval_seconds,
        inter_stop_delay=settings.refresh_stop_delay_seconds,
        route_type=settings.default_route_type,
    )
    automation_engine = AutomationEngine(
        cache,
        ActionExecutor.from_settings(settings),
        AutomationConfig.from_settings(settings),
    )

    app.state.cache = cache
    app.state.stop_store = stop_store
    app.state.refresher = refresher
    app.state.automation = automation_engine

    try:
        await stop_store.ensure_default(settings.default_stop_id, settings.default_stop_name)
    except Exception:
        logger.exception("Failed to seed default stop")

    scheduler = create_scheduler(automation_engine, refresher)
    scheduler.start()
    logger.info(
        "MBTA tracker started - refreshing pinned stops every %ss, automation every %ss",
        settings.refresh_interval_seconds, automation_engine.config.poll_seconds,
    )

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await mbta.close()
    await engine.dispose()
    logger.info("MBTA tracker shut down")


app = FastAPI(
    title="MBTA Tracker",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(predictions.router)
app.include_router(stops.router)
app.include_router(automation.router)
app.include_router(diagnostics.router)


@app.exception_handler(UpstreamFetchError)
async def upstream_error_handler(request: Request, exc: UpstreamFetchError):
    """No usable predictions at all: pass the upstream status through."""
    status = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    return JSONResponse(
        status_code=status,
        content={"error": "Failed to fetch predictions", "details": str(exc), "url": exc.url},
    )


@app.get("/api/health")
async def health():
    return {"ok": True, "service": "mbta-tracker-api"}


@app.get("/api/default-stop")
async def default_stop():
    """Redirect to the default stop's predictions."""
    return RedirectResponse(f"/api/stops/{quote(settings.default_stop_id)}/predictions", status_code=302)
