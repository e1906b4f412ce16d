"""Audit log of successful upstream prediction fetches."""

import datetime
import logging

from app.core.types import CacheKey
from app.models.tables import PredictionFetch

logger = logging.getLogger(__name__)


class FetchAuditLog:
    """Writes one prediction_fetches row per successful upstream fetch."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def record_fetch(self, key: CacheKey, count: int, fetched_at_ms: int) -> None:
        try:
            async with self.session_factory() as session:
                session.add(PredictionFetch(
                    stop_id=key.stop_id,
                    route_type=key.route_type,
                    route_id=key.route_id or None,
                    count=count,
                    fetched_at=datetime.datetime.fromtimestamp(
                        fetched_at_ms / 1000, tz=datetime.timezone.utc
                    ),
                ))
                await session.commit()
        except Exception:
            logger.exception("Failed to record prediction fetch for %s", key.label)
