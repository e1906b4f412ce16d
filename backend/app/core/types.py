"""Core value types shared by the cache, refresher and automation engine."""

import datetime
import enum
from dataclasses import dataclass, field
from typing import NamedTuple

OUTBOUND = 0
INBOUND = 1


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)


def to_iso(ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string, e.g. '2026-02-13T16:30:42.000Z'."""
    dt = datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso_ms(raw: str | None) -> int | None:
    """Parse an ISO-8601 timestamp to epoch milliseconds; None when missing or malformed."""
    if not raw:
        return None
    try:
        dt = datetime.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return int(dt.timestamp() * 1000)


@dataclass(frozen=True)
class Prediction:
    id: str
    direction_id: int | None
    direction: str
    status: str | None = None
    arrival_time: str | None = None
    departure_time: str | None = None
    minutes: int | None = None  # rounded minutes from fetch time to best of arrival/departure
    route_id: str | None = None
    route_name: str | None = None
    headsign: str | None = None


@dataclass(frozen=True)
class PredictionSet:
    stop_id: str
    fetched_at: str
    predictions: tuple[Prediction, ...] = field(default_factory=tuple)


class CacheKey(NamedTuple):
    stop_id: str
    route_type: int | None
    route_id: str

    @classmethod
    def of(
        cls,
        stop_id: str,
        route_type: int | str | None = None,
        route_id: str | None = None,
    ) -> "CacheKey":
        """Normalize request filters so equivalent requests share one entry."""
        if isinstance(route_type, str):
            route_type = int(route_type) if route_type.strip() else None
        return cls(
            stop_id=str(stop_id).strip(),
            route_type=route_type,
            route_id=(route_id or "").strip(),
        )

    @property
    def label(self) -> str:
        route_type = "any" if self.route_type is None else self.route_type
        return f"{self.stop_id}:{route_type}:{self.route_id or 'all'}"


class Provenance(str, enum.Enum):
    FRESH_CACHE = "fresh-cache"
    FRESH_FETCH = "fresh-fetch"
    STALE_CACHE = "stale-cache"
    STALE_AFTER_FAILED_REFETCH = "stale-after-failed-refetch"


@dataclass(frozen=True)
class CacheResult:
    payload: PredictionSet
    provenance: Provenance
    error: str | None = None

    @property
    def cached(self) -> bool:
        return self.provenance in (Provenance.FRESH_CACHE, Provenance.STALE_CACHE)

    @property
    def stale(self) -> bool:
        return self.provenance in (Provenance.STALE_CACHE, Provenance.STALE_AFTER_FAILED_REFETCH)
