"""Sync pipeline state: backfill progress, backfill package list, feed cursors."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from npmsync.db.base import Base, TimestampMixin

BACKFILL_STATE_ID = 1


class BackfillStateRow(Base, TimestampMixin):
    """Single global row. ``version`` is bumped on every conditional update."""

    __tablename__ = "backfill_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=BACKFILL_STATE_ID)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="idle")
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    listing_cursor: Mapped[str | None] = mapped_column(String(214), nullable=True)
    listing_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BackfillPackageRow(Base):
    """Package names in listing order; ``position`` is the backfill offset."""

    __tablename__ = "backfill_packages"

    position: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    package_name: Mapped[str] = mapped_column(String(214), nullable=False)


class SyncCursorRow(Base, TimestampMixin):
    __tablename__ = "sync_cursors"

    feed: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
