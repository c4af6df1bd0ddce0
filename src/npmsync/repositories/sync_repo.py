"""Repositories for backfill progress, the backfill package list and feed cursors."""

from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from npmsync.db.models.sync import (
    BACKFILL_STATE_ID,
    BackfillPackageRow,
    BackfillStateRow,
    SyncCursorRow,
)
from npmsync.repositories.base import BaseRepository, dialect_insert

# Rows per multi-row INSERT; keeps SQLite under its bound-parameter limit
_INSERT_CHUNK = 400


class BackfillStateRepository(BaseRepository[BackfillStateRow]):
    """The single backfill state row, updated only by compare-and-swap."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, BackfillStateRow)

    async def load(self) -> BackfillStateRow:
        """Return the state row, creating the idle default on first use."""
        await self.insert_ignore(["id"], id=BACKFILL_STATE_ID, status="idle", version=0)
        row = await self.find_one(id=BACKFILL_STATE_ID)
        await self.session.refresh(row)
        return row

    async def compare_and_swap(self, expected_version: int, **changes: Any) -> bool:
        """Apply ``changes`` only if the row is still at ``expected_version``."""
        stmt = (
            update(BackfillStateRow)
            .where(
                BackfillStateRow.id == BACKFILL_STATE_ID,
                BackfillStateRow.version == expected_version,
            )
            .values(version=expected_version + 1, **changes)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class BackfillPackageRepository(BaseRepository[BackfillPackageRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, BackfillPackageRow)

    async def append(self, start_position: int, names: list[str]) -> None:
        """Store ``names`` at consecutive positions from ``start_position``.

        Positions already present are left alone so a replayed page is harmless.
        """
        rows = [
            {"position": start_position + i, "package_name": name}
            for i, name in enumerate(names)
        ]
        for chunk_start in range(0, len(rows), _INSERT_CHUNK):
            chunk = rows[chunk_start:chunk_start + _INSERT_CHUNK]
            stmt = (
                dialect_insert(self.session, BackfillPackageRow)
                .values(chunk)
                .on_conflict_do_nothing(index_elements=["position"])
            )
            await self.session.execute(stmt)

    async def batch(self, offset: int, limit: int) -> list[str]:
        stmt = (
            select(BackfillPackageRow.package_name)
            .where(BackfillPackageRow.position >= offset)
            .order_by(BackfillPackageRow.position)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def clear(self) -> None:
        await self.session.execute(delete(BackfillPackageRow))


class SyncCursorRepository(BaseRepository[SyncCursorRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, SyncCursorRow)

    async def get_sequence(self, feed: str) -> int | None:
        row = await self.find_one(feed=feed)
        return row.sequence_id if row is not None else None

    async def save(self, feed: str, sequence_id: int) -> None:
        row = await self.find_one(feed=feed)
        if row is None:
            await self.create(feed=feed, sequence_id=sequence_id)
        else:
            await self.update(row, sequence_id=sequence_id)
