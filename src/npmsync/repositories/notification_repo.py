"""Notification repository."""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from npmsync.db.models.notification import NotificationRow
from npmsync.models.enums import Severity
from npmsync.repositories.base import BaseRepository
from npmsync.services.id_generator import generate_id


class NotificationRepository(BaseRepository[NotificationRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, NotificationRow)

    async def get(self, notification_id: str) -> NotificationRow | None:
        return await self.find_one(id=notification_id)

    async def insert_if_absent(self, user_id: str, package_name: str, new_version: str, **fields) -> bool:
        """Record an in-app notification once per (user, package, version)."""
        return await self.insert_ignore(
            ["user_id", "package_name", "new_version"],
            id=generate_id("ntf_"),
            user_id=user_id,
            package_name=package_name,
            new_version=new_version,
            **fields,
        )

    def _filtered(self, stmt, user_id: str, unread_only: bool, severity: Severity | None):
        stmt = stmt.where(NotificationRow.user_id == user_id)
        if unread_only:
            stmt = stmt.where(NotificationRow.read.is_(False))
        if severity is not None:
            stmt = stmt.where(NotificationRow.severity == severity.value)
        return stmt

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        severity: Severity | None = None,
    ) -> list[NotificationRow]:
        stmt = self._filtered(select(NotificationRow), user_id, unread_only, severity)
        stmt = (
            stmt.order_by(NotificationRow.created_at.desc(), NotificationRow.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_unread_since(self, user_id: str, since: datetime, limit: int = 50) -> list[NotificationRow]:
        stmt = (
            select(NotificationRow)
            .where(
                NotificationRow.user_id == user_id,
                NotificationRow.read.is_(False),
                NotificationRow.created_at >= since,
            )
            .order_by(NotificationRow.created_at.desc(), NotificationRow.id)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def count_for_user(
        self, user_id: str, unread_only: bool = False, severity: Severity | None = None
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(NotificationRow), user_id, unread_only, severity
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_unread_critical(self, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(NotificationRow)
            .where(
                NotificationRow.user_id == user_id,
                NotificationRow.read.is_(False),
                NotificationRow.severity == Severity.CRITICAL.value,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        stmt = (
            update(NotificationRow)
            .where(NotificationRow.id == notification_id, NotificationRow.user_id == user_id)
            .values(read=True)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def mark_all_read(self, user_id: str) -> int:
        stmt = (
            update(NotificationRow)
            .where(NotificationRow.user_id == user_id, NotificationRow.read.is_(False))
            .values(read=True)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
