"""Pinned stop list persisted in the database."""

import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import delete, select

from app.models.tables import PinnedStop

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StopRecord:
    stop_id: str
    name: str
    pinned: bool = True


class StopStore:
    """CRUD over the pinned stops table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def list_pinned(self) -> list[StopRecord]:
        """Pinned stops in the order they were pinned."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PinnedStop).where(PinnedStop.pinned.is_(True)).order_by(PinnedStop.created_at)
            )
            return [StopRecord(s.stop_id, s.name, s.pinned) for s in result.scalars()]

    async def pin(self, stop_id: str, name: str | None = None) -> StopRecord:
        """Pin a stop, updating its name if already present."""
        stop_id = stop_id.strip()
        name = (name or "").strip() or stop_id
        async with self.session_factory() as session:
            row = await session.get(PinnedStop, stop_id)
            if row is None:
                row = PinnedStop(
                    stop_id=stop_id,
                    name=name,
                    pinned=True,
                    created_at=datetime.datetime.now(datetime.timezone.utc),
                )
                session.add(row)
            else:
                row.name = name
                row.pinned = True
            await session.commit()
        logger.info("Pinned stop %s (%s)", stop_id, name)
        return StopRecord(stop_id, name, True)

    async def unpin(self, stop_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(PinnedStop).where(PinnedStop.stop_id == stop_id.strip()))
            await session.commit()
        logger.info("Unpinned stop %s", stop_id)

    async def ensure_default(self, stop_id: str, name: str) -> None:
        """Insert the default stop unless it already exists (never overwrites)."""
        async with self.session_factory() as session:
            if await session.get(PinnedStop, stop_id) is not None:
                return
            session.add(PinnedStop(
                stop_id=stop_id,
                name=name,
                pinned=True,
                created_at=datetime.datetime.now(datetime.timezone.utc),
            ))
            await session.commit()
        logger.info("Seeded default stop %s (%s)", stop_id, name)
