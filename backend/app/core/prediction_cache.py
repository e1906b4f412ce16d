"""Per-key prediction cache shielding the rate-limited MBTA API.

Each (stop, route type, route) key owns one CacheEntry. Reads are served from
the entry while it is fresh, served as stale while it is inside the stale
tolerance, and otherwise trigger a fetch. At most one fetch per key is ever
outstanding: concurrent readers await the same task. A failed fetch never
replaces or clears a previously good payload; readers get that payload marked
stale for as long as it is within the tolerance, and an error after that.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from app.core.errors import UpstreamFetchError
from app.core.types import CacheKey, CacheResult, PredictionSet, Provenance, now_ms, to_iso

logger = logging.getLogger(__name__)


class PredictionSource(Protocol):
    async def fetch_predictions(
        self,
        stop_id: str,
        route_type: int | None = None,
        route_id: str | None = None,
        limit: int | None = None,
    ) -> PredictionSet: ...


class FetchAudit(Protocol):
    async def record_fetch(self, key: CacheKey, count: int, fetched_at_ms: int) -> None: ...


@dataclass
class FetchFailure:
    message: str
    at_ms: int


@dataclass
class CacheEntry:
    payload: PredictionSet | None = None
    fetched_at_ms: int = 0
    expires_at_ms: int = 0
    last_error: FetchFailure | None = None
    in_flight: asyncio.Task | None = None


class PredictionCache:
    """Fresh/stale/expired cache with single-flight fetches per key."""

    def __init__(
        self,
        source: PredictionSource,
        ttl_ms: int,
        stale_tolerance_ms: int,
        fetch_timeout_ms: int,
        limit: int | None = None,
        audit: FetchAudit | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if stale_tolerance_ms <= ttl_ms:
            raise ValueError("stale tolerance must be longer than the freshness TTL")
        self.source = source
        self.ttl_ms = ttl_ms
        self.stale_tolerance_ms = stale_tolerance_ms
        self.fetch_timeout_ms = fetch_timeout_ms
        self.limit = limit
        self.audit = audit
        self.clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        # Strong refs to fire-and-forget tasks (audit writes, revalidations)
        self._background: set[asyncio.Task] = set()

    def entry(self, key: CacheKey) -> CacheEntry:
        """Get the entry for a key, creating an empty one on first access."""
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry()
            self._entries[key] = entry
        return entry

    def _within_stale_tolerance(self, entry: CacheEntry, now: int) -> bool:
        return entry.payload is not None and now - entry.fetched_at_ms <= self.stale_tolerance_ms

    async def get(
        self,
        key: CacheKey,
        force_refresh: bool = False,
        allow_stale: bool = True,
    ) -> CacheResult:
        """Return predictions for a key with their provenance.

        Raises UpstreamFetchError only when a fetch failed and no payload
        within the stale tolerance exists (or allow_stale is False).
        """
        entry = self.entry(key)
        now = self.clock()

        if not force_refresh and entry.payload is not None:
            if now < entry.expires_at_ms:
                return CacheResult(entry.payload, Provenance.FRESH_CACHE)
            if allow_stale and self._within_stale_tolerance(entry, now):
                self._revalidate(key, entry, now)
                error = entry.last_error.message if entry.last_error else None
                return CacheResult(entry.payload, Provenance.STALE_CACHE, error)

        task = self._start_fetch(key, entry)
        try:
            payload = await asyncio.shield(task)
        except UpstreamFetchError as e:
            if allow_stale and self._within_stale_tolerance(entry, self.clock()):
                logger.warning("Serving stale predictions for %s after failed refetch: %s", key.label, e)
                return CacheResult(entry.payload, Provenance.STALE_AFTER_FAILED_REFETCH, str(e))
            raise
        return CacheResult(payload, Provenance.FRESH_FETCH)

    def _start_fetch(self, key: CacheKey, entry: CacheEntry) -> asyncio.Task:
        """Return the outstanding fetch for a key, starting one if idle."""
        # A task cancelled before it ever ran is done but never cleared itself
        if entry.in_flight is None or entry.in_flight.done():
            task = asyncio.get_running_loop().create_task(self._fetch(key, entry))
            # Every awaiter may be cancelled before the fetch settles
            task.add_done_callback(self._finish_fetch)
            entry.in_flight = task
        else:
            logger.debug("Joining in-flight fetch for %s", key.label)
        return entry.in_flight

    def _recently_failed(self, entry: CacheEntry, now: int) -> bool:
        return entry.last_error is not None and now - entry.last_error.at_ms < self.ttl_ms

    def _revalidate(self, key: CacheKey, entry: CacheEntry, now: int) -> None:
        """Refresh a stale entry in the background without blocking the reader.

        A key whose last fetch failed is retried at most once per TTL, so
        stale reads against a failing upstream do not turn into one call each.
        """
        if entry.in_flight is not None and not entry.in_flight.done():
            return
        if self._recently_failed(entry, now):
            logger.debug("Skipping revalidation of %s, last fetch failed recently", key.label)
            return
        self._background.add(self._start_fetch(key, entry))

    def _finish_fetch(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Prediction fetch settled with error: %s", task.exception())

    async def _fetch(self, key: CacheKey, entry: CacheEntry) -> PredictionSet:
        try:
            try:
                payload = await asyncio.wait_for(
                    self.source.fetch_predictions(
                        key.stop_id,
                        route_type=key.route_type,
                        route_id=key.route_id or None,
                        limit=self.limit,
                    ),
                    timeout=self.fetch_timeout_ms / 1000,
                )
            except asyncio.TimeoutError as e:
                raise UpstreamFetchError(
                    f"Prediction fetch timed out after {self.fetch_timeout_ms} ms", status_code=504,
                ) from e
            except UpstreamFetchError:
                raise
            except Exception as e:
                raise UpstreamFetchError(f"Prediction fetch failed: {e}") from e
        except UpstreamFetchError as e:
            entry.last_error = FetchFailure(message=str(e), at_ms=self.clock())
            logger.warning("Prediction fetch failed for %s: %s", key.label, e)
            raise
        finally:
            entry.in_flight = None

        fetched_at = self.clock()
        entry.payload = payload
        entry.fetched_at_ms = fetched_at
        entry.expires_at_ms = fetched_at + self.ttl_ms
        entry.last_error = None
        logger.debug("Cached %d predictions for %s", len(payload.predictions), key.label)
        self._record_audit(key, len(payload.predictions), fetched_at)
        return payload

    def _record_audit(self, key: CacheKey, count: int, fetched_at_ms: int) -> None:
        if self.audit is None:
            return
        task = asyncio.get_running_loop().create_task(self.audit.record_fetch(key, count, fetched_at_ms))
        self._background.add(task)
        task.add_done_callback(self._finish_audit)

    def _finish_audit(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Failed to record prediction fetch: %s", task.exception())

    def snapshot(self) -> list[dict]:
        """Diagnostics view of every entry."""
        now = self.clock()
        result = []
        for key, entry in self._entries.items():
            if entry.payload is None:
                state = "empty"
            elif now < entry.expires_at_ms:
                state = "fresh"
            elif self._within_stale_tolerance(entry, now):
                state = "stale"
            else:
                state = "expired"
            result.append({
                "key": key.label,
                "stop_id": key.stop_id,
                "route_type": key.route_type,
                "route_id": key.route_id,
                "state": state,
                "count": len(entry.payload.predictions) if entry.payload else 0,
                "fetched_at": to_iso(entry.fetched_at_ms) if entry.payload else None,
                "expires_at": to_iso(entry.expires_at_ms) if entry.payload else None,
                "last_error": entry.last_error.message if entry.last_error else None,
                "last_error_at": to_iso(entry.last_error.at_ms) if entry.last_error else None,
                "in_flight": entry.in_flight is not None and not entry.in_flight.done(),
            })
        return result
