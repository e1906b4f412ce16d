"""Fakes shared by the test modules."""

import asyncio

from app.core.actions import ActionContext, DeliveryStrategy
from app.core.errors import ActionDeliveryError
from app.core.prediction_cache import PredictionCache
from app.core.stop_store import StopRecord
from app.core.types import Prediction, PredictionSet, to_iso

# 2026-03-02T12:00:00Z
T0 = 1_772_452_800_000


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeSource:
    """Prediction source returning a fixed payload, optionally slow or failing."""

    def __init__(self, payload: PredictionSet | None = None, delay: float = 0.0) -> None:
        self.payload = payload or make_payload("stopA", [])
        self.delay = delay
        self.error: Exception | None = None
        self.calls: list[tuple] = []

    async def fetch_predictions(self, stop_id, route_type=None, route_id=None, limit=None):
        self.calls.append((stop_id, route_type, route_id, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


class RecordingDelivery(DeliveryStrategy):
    """Delivery channel that records every context it is asked to deliver."""

    name = "recording"

    def __init__(self) -> None:
        self.contexts: list[ActionContext] = []
        self.fail_with: str | None = None

    async def deliver(self, context: ActionContext) -> None:
        self.contexts.append(context)
        if self.fail_with:
            raise ActionDeliveryError(self.fail_with)

    def actions(self) -> list[str]:
        return [c.action for c in self.contexts]


class MemoryStopStore:
    def __init__(self, stops: list[StopRecord] | None = None) -> None:
        self.stops = {s.stop_id: s for s in stops or []}

    async def list_pinned(self) -> list[StopRecord]:
        return list(self.stops.values())

    async def pin(self, stop_id: str, name: str | None = None) -> StopRecord:
        record = StopRecord(stop_id, name or stop_id)
        self.stops[stop_id] = record
        return record

    async def unpin(self, stop_id: str) -> None:
        self.stops.pop(stop_id, None)


def make_prediction(
    pid: str,
    direction_id: int,
    arrival_ms: int | None = None,
    departure_ms: int | None = None,
    route_id: str = "Blue",
    headsign: str | None = None,
) -> Prediction:
    return Prediction(
        id=pid,
        direction_id=direction_id,
        direction="Outbound" if direction_id == 0 else "Inbound",
        arrival_time=to_iso(arrival_ms) if arrival_ms is not None else None,
        departure_time=to_iso(departure_ms) if departure_ms is not None else None,
        route_id=route_id,
        route_name="Blue Line",
        headsign=headsign,
    )


def make_payload(stop_id: str, predictions: list[Prediction], fetched_ms: int = T0) -> PredictionSet:
    return PredictionSet(stop_id=stop_id, fetched_at=to_iso(fetched_ms), predictions=tuple(predictions))


def make_cache(source, clock, ttl_ms=10_000, stale_ms=120_000, timeout_ms=1_000, audit=None) -> PredictionCache:
    return PredictionCache(
        source,
        ttl_ms=ttl_ms,
        stale_tolerance_ms=stale_ms,
        fetch_timeout_ms=timeout_ms,
        limit=16,
        audit=audit,
        clock=clock,
    )
