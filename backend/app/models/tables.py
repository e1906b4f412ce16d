import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class PinnedStop(Base):
    __tablename__ = "pinned_stops"

    stop_id: Mapped[str] = mapped_column(String(64), primary_key=True)  # MBTA stop id, e.g. place-orhte
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class PredictionFetch(Base):
    __tablename__ = "prediction_fetches"
    __table_args__ = (
        Index("ix_pf_fetched_at", "fetched_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    stop_id: Mapped[str] = mapped_column(String(64), nullable=False)
    route_type: Mapped[int | None] = mapped_column(Integer, nullable=True)
    route_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fetched_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
