"""Keeps the prediction cache warm for every pinned stop."""

import asyncio
import datetime
import logging
import time

from app.core.errors import UpstreamFetchError
from app.core.prediction_cache import PredictionCache
from app.core.types import CacheKey, now_ms, to_iso

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh_pinned_stops"


class BackgroundRefresher:
    """Self-rescheduling refresh job over the pinned stops.

    Stops are refreshed one at a time with a fixed delay in between so the
    upstream sees a smooth request rate instead of a burst. The next pass
    starts `poll_interval` after the previous one started, or immediately if
    the pass took longer than that. Passes run as one-shot APScheduler jobs,
    each registering its successor when it finishes.
    """

    def __init__(
        self,
        cache: PredictionCache,
        stop_store,
        poll_interval: float,
        inter_stop_delay: float,
        route_type: int | None = None,
    ) -> None:
        self.cache = cache
        self.stop_store = stop_store
        self.poll_interval = poll_interval
        self.inter_stop_delay = inter_stop_delay
        self.route_type = route_type
        self._scheduler = None

        # Diagnostics
        self.last_pass_at: str | None = None
        self.last_pass_duration_s: float | None = None
        self.last_pass_refreshed = 0
        self.last_pass_failed = 0
        self.next_pass_at: str | None = None
        self.next_pass_delay_s: float | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def run_pass(self) -> None:
        """Refresh every pinned stop once, sequentially."""
        started = time.monotonic()
        refreshed = failed = 0
        try:
            stops = await self.stop_store.list_pinned()
        except Exception:
            logger.exception("Failed to load pinned stops for refresh")
            stops = []

        for i, stop in enumerate(stops):
            if i:
                await asyncio.sleep(self.inter_stop_delay)
            key = CacheKey.of(stop.stop_id, self.route_type)
            try:
                result = await self.cache.get(key, force_refresh=True)
            except UpstreamFetchError as e:
                failed += 1
                logger.warning("Background refresh failed for %s: %s", key.label, e)
            except Exception:
                failed += 1
                logger.exception("Unexpected error refreshing %s", key.label)
            else:
                # Still serving the previous payload: the refetch itself failed
                if result.stale:
                    failed += 1
                else:
                    refreshed += 1

        self.last_pass_at = to_iso(now_ms())
        self.last_pass_duration_s = time.monotonic() - started
        self.last_pass_refreshed = refreshed
        self.last_pass_failed = failed
        logger.debug(
            "Refresh pass: %d refreshed, %d failed in %.2fs",
            refreshed, failed, self.last_pass_duration_s,
        )

    def next_delay(self, elapsed: float) -> float:
        """Seconds to wait after a pass that took `elapsed` seconds."""
        return max(0.0, self.poll_interval - elapsed)

    def attach(self, scheduler, delay: float = 0.0) -> None:
        """Register the first refresh pass on `scheduler`."""
        self._scheduler = scheduler
        self._schedule_next(delay)

    def _schedule_next(self, delay: float) -> None:
        run_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=delay)
        self._scheduler.add_job(
            self._scheduled_pass,
            "date",
            run_date=run_at,
            id=REFRESH_JOB_ID,
            name="Refresh pinned stop predictions",
            replace_existing=True,
            # The successor can be dispatched before this pass has fully returned
            max_instances=2,
            misfire_grace_time=None,
        )
        self.next_pass_delay_s = delay
        self.next_pass_at = to_iso(int(run_at.timestamp() * 1000))

    async def _scheduled_pass(self) -> None:
        started = time.monotonic()
        try:
            await self.run_pass()
        except Exception:
            logger.exception("Refresh pass crashed")
        self._schedule_next(self.next_delay(time.monotonic() - started))

    def snapshot(self) -> dict:
        return {
            "running": self.running,
            "poll_interval_s": self.poll_interval,
            "last_pass_at": self.last_pass_at,
            "last_pass_duration_s": self.last_pass_duration_s,
            "last_pass_refreshed": self.last_pass_refreshed,
            "last_pass_failed": self.last_pass_failed,
            "next_pass_at": self.next_pass_at,
        }
