"""Derive automation time windows from stop predictions.

Outbound trains open a window ahead of their arrival (the train is
approaching); inbound trains open one after their departure (the train has
just left and is passing by). Windows are recomputed from scratch on every
evaluation and never merged across evaluations.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from app.core.types import INBOUND, OUTBOUND, Prediction, parse_iso_ms, to_iso

OUTBOUND_ARRIVAL = "outbound_arrival"
INBOUND_DEPARTURE = "inbound_departure"


@dataclass(frozen=True)
class PredictionWindow:
    id: str
    mode: str
    direction: str
    summary: str
    event_ms: int
    start_ms: int
    end_ms: int

    def contains(self, now_ms: int) -> bool:
        return self.start_ms <= now_ms <= self.end_ms

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "mode": self.mode,
            "direction": self.direction,
            "summary": self.summary,
            "startAt": to_iso(self.start_ms),
            "endAt": to_iso(self.end_ms),
            "eventAt": to_iso(self.event_ms),
        }


def _label(p: Prediction) -> str:
    return p.headsign or p.route_name or p.route_id or "Train"


def build_windows(
    predictions: Iterable[Prediction],
    route_id: str,
    lead_ms: int,
    pass_ms: int,
    stop_name: str,
) -> list[PredictionWindow]:
    """Build windows for predictions on `route_id`, sorted by start time."""
    windows = []
    for p in predictions:
        if p is None or p.route_id != route_id:
            continue

        if p.direction_id == OUTBOUND:
            arrival_ms = parse_iso_ms(p.arrival_time)
            if arrival_ms is not None:
                windows.append(PredictionWindow(
                    id=f"{p.id}:outbound-arrival",
                    mode=OUTBOUND_ARRIVAL,
                    direction="Outbound",
                    summary=f"Outbound train arriving {stop_name} ({_label(p)})",
                    event_ms=arrival_ms,
                    start_ms=arrival_ms - lead_ms,
                    end_ms=arrival_ms + pass_ms,
                ))

        elif p.direction_id == INBOUND:
            departure_ms = parse_iso_ms(p.departure_time)
            if departure_ms is not None:
                windows.append(PredictionWindow(
                    id=f"{p.id}:inbound-departure",
                    mode=INBOUND_DEPARTURE,
                    direction="Inbound",
                    summary=f"Inbound train departed {stop_name} ({_label(p)})",
                    event_ms=departure_ms,
                    start_ms=departure_ms + lead_ms,
                    end_ms=departure_ms + lead_ms + pass_ms,
                ))

    # Stable sort: equal starts keep prediction order
    windows.sort(key=lambda w: w.start_ms)
    return windows


def select_windows(
    windows: list[PredictionWindow], now_ms: int
) -> tuple[PredictionWindow | None, PredictionWindow | None]:
    """Return (current, next): the earliest-starting window containing now, and
    the first window starting strictly after now. `windows` must be sorted."""
    current = next((w for w in windows if w.contains(now_ms)), None)
    upcoming = next((w for w in windows if w.start_ms > now_ms), None)
    return current, upcoming
