"""APScheduler setup for periodic tasks."""

import datetime
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(automation, refresher=None) -> AsyncIOScheduler:
    """Create the scheduler with the automation tick and pinned-stop refresh jobs."""
    scheduler = AsyncIOScheduler()

    if automation.enabled:
        # Evaluate windows every N seconds; an overrunning tick is skipped, not stacked
        scheduler.add_job(
            automation.tick,
            "interval",
            seconds=automation.config.poll_seconds,
            id="automation_tick",
            name="Evaluate volume automation windows",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.datetime.now(datetime.timezone.utc),
        )
    else:
        logger.info("Volume automation disabled")

    # Refresh pass runs now; each pass schedules the next one
    if refresher is not None:
        refresher.attach(scheduler)

    return scheduler
