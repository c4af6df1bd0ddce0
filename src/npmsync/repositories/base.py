"""Repository base class shared by every table wrapper."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from npmsync.db.base import Base

RowT = TypeVar("RowT", bound=Base)


def dialect_insert(session: AsyncSession, model_class: type[Base]):
    """INSERT construct for the session's dialect, so ``on_conflict_do_nothing`` is available."""
    if session.bind is not None and session.bind.dialect.name == "postgresql":
        return postgresql.insert(model_class)
    return sqlite.insert(model_class)


class BaseRepository(Generic[RowT]):
    def __init__(self, session: AsyncSession, model_class: type[RowT]):
        self.session = session
        self.model_class = model_class

    async def find_one(self, **filters: Any) -> RowT | None:
        stmt = select(self.model_class).filter_by(**filters)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def create(self, **values: Any) -> RowT:
        row = self.model_class(**values)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update(self, row: RowT, **changes: Any) -> RowT:
        for column, value in changes.items():
            setattr(row, column, value)
        await self.session.flush()
        return row

    async def insert_ignore(self, conflict_columns: list[str], **values: Any) -> bool:
        """INSERT ... ON CONFLICT DO NOTHING on ``conflict_columns``.

        Returns True when the row was written and False when it already existed.
        Concurrent callers racing on the same key get exactly one True.
        """
        stmt = (
            dialect_insert(self.session, self.model_class)
            .values(**values)
            .on_conflict_do_nothing(index_elements=conflict_columns)
            .returning(self.model_class.__mapper__.primary_key[0])
        )
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None
