from app.core.types import CacheResult, Prediction
from app.schemas.base import CamelModel


class PredictionOut(CamelModel):
    id: str
    direction_id: int | None = None
    direction: str
    status: str | None = None
    arrival_time: str | None = None
    departure_time: str | None = None
    minutes: int | None = None
    route_id: str | None = None
    route_name: str | None = None
    headsign: str | None = None

    @classmethod
    def from_prediction(cls, p: Prediction) -> "PredictionOut":
        return cls(
            id=p.id,
            direction_id=p.direction_id,
            direction=p.direction,
            status=p.status,
            arrival_time=p.arrival_time,
            departure_time=p.departure_time,
            minutes=p.minutes,
            route_id=p.route_id,
            route_name=p.route_name,
            headsign=p.headsign,
        )


class PredictionsResponse(CamelModel):
    stop_id: str
    fetched_at: str
    predictions: list[PredictionOut] = []
    cached: bool
    stale: bool
    source: str
    error: str | None = None

    @classmethod
    def from_result(cls, result: CacheResult) -> "PredictionsResponse":
        payload = result.payload
        return cls(
            stop_id=payload.stop_id,
            fetched_at=payload.fetched_at,
            predictions=[PredictionOut.from_prediction(p) for p in payload.predictions],
            cached=result.cached,
            stale=result.stale,
            source=result.provenance.value,
            error=result.error,
        )


class UpstreamErrorResponse(CamelModel):
    error: str
    details: str
    url: str | None = None
