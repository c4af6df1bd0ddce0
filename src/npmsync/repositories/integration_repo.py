"""Repository for per-user chat integration connections."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from npmsync.db.models.user import IntegrationConnectionRow
from npmsync.models.enums import IntegrationProvider
from npmsync.repositories.base import BaseRepository


class IntegrationConnectionRepository(BaseRepository[IntegrationConnectionRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, IntegrationConnectionRow)

    async def get(self, connection_id: str) -> IntegrationConnectionRow | None:
        return await self.find_one(id=connection_id)

    async def get_enabled(
        self, user_id: str, provider: IntegrationProvider = IntegrationProvider.SLACK
    ) -> IntegrationConnectionRow | None:
        """The user's first enabled connection for ``provider``, if any."""
        stmt = (
            select(IntegrationConnectionRow)
            .where(
                IntegrationConnectionRow.user_id == user_id,
                IntegrationConnectionRow.provider == provider.value,
                IntegrationConnectionRow.enabled.is_(True),
            )
            .order_by(IntegrationConnectionRow.created_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
