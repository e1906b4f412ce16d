"""Stop predictions REST endpoint backed by the prediction cache."""

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_cache
from app.core.prediction_cache import PredictionCache
from app.core.types import CacheKey
from app.schemas.prediction import PredictionsResponse

router = APIRouter(prefix="/api/stops", tags=["predictions"])


@router.get("/{stop_id}/predictions", response_model=PredictionsResponse)
async def get_predictions(
    stop_id: str,
    route_type: int | None = Query(1, alias="routeType"),
    route_id: str = Query("", alias="routeId"),
    refresh: bool = False,
    cache: PredictionCache = Depends(get_cache),
):
    """Get upcoming predictions for a stop, with cache provenance."""
    key = CacheKey.of(stop_id, route_type, route_id)
    result = await cache.get(key, force_refresh=refresh)
    return PredictionsResponse.from_result(result)
