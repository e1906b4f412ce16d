"""Diagnostics API for inspecting cache and refresher state."""

from fastapi import APIRouter, Depends

from app.api.deps import get_cache, get_refresher
from app.core.prediction_cache import PredictionCache
from app.core.refresher import BackgroundRefresher

router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])


@router.get("")
async def get_diagnostics(
    cache: PredictionCache = Depends(get_cache),
    refresher: BackgroundRefresher | None = Depends(get_refresher),
):
    """Per-key cache state (fresh/stale/expired/empty) and last refresh pass."""
    return {
        "cache": {
            "ttl_ms": cache.ttl_ms,
            "stale_tolerance_ms": cache.stale_tolerance_ms,
            "entries": cache.snapshot(),
        },
        "refresher": refresher.snapshot() if refresher else None,
    }


@router.get("/cache/{stop_id}")
async def get_stop_cache(stop_id: str, cache: PredictionCache = Depends(get_cache)):
    """Cache entries for one stop, across all filters."""
    entries = [e for e in cache.snapshot() if e["stop_id"] == stop_id]
    if not entries:
        return {"error": "Stop not cached"}
    return {"entries": entries}
