"""Repositories for users, favorites and notification preferences."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from npmsync.db.models.user import FavoriteRow, NotificationPreferencesRow, UserRow
from npmsync.models.enums import DigestFrequency
from npmsync.models.notification import FavoritingUser, NotificationPreferences
from npmsync.repositories.base import BaseRepository
from npmsync.services.id_generator import generate_id


class UserRepository(BaseRepository[UserRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, UserRow)

    async def get(self, user_id: str) -> UserRow | None:
        return await self.find_one(id=user_id)


class FavoriteRepository(BaseRepository[FavoriteRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, FavoriteRow)

    async def add(self, user_id: str, package_name: str) -> bool:
        return await self.insert_ignore(
            ["user_id", "package_name"],
            id=generate_id("fav_"),
            user_id=user_id,
            package_name=package_name,
        )

    async def list_favoriting_users(self, package_name: str) -> list[FavoritingUser]:
        """Users following ``package_name`` with their effective preferences.

        Users without a stored preferences row get the defaults.
        """
        stmt = (
            select(UserRow.id, UserRow.email, NotificationPreferencesRow)
            .join(FavoriteRow, FavoriteRow.user_id == UserRow.id)
            .outerjoin(
                NotificationPreferencesRow,
                NotificationPreferencesRow.user_id == UserRow.id,
            )
            .where(FavoriteRow.package_name == package_name)
            .order_by(UserRow.id)
        )
        result = await self.session.execute(stmt)
        users = []
        for user_id, email, prefs_row in result.all():
            prefs = (
                NotificationPreferences.model_validate(prefs_row)
                if prefs_row is not None
                else NotificationPreferences()
            )
            users.append(FavoritingUser(user_id=user_id, email=email, preferences=prefs))
        return users


class PreferencesRepository(BaseRepository[NotificationPreferencesRow]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, NotificationPreferencesRow)

    async def get_for_user(self, user_id: str) -> NotificationPreferencesRow | None:
        return await self.find_one(user_id=user_id)

    async def list_digest_recipients(self, frequency: DigestFrequency) -> list[tuple[str, str]]:
        """(user id, email) of every user with a digest enabled at ``frequency``."""
        stmt = (
            select(UserRow.id, UserRow.email)
            .join(NotificationPreferencesRow, NotificationPreferencesRow.user_id == UserRow.id)
            .where(
                NotificationPreferencesRow.email_digest_enabled.is_(True),
                NotificationPreferencesRow.email_digest_frequency == frequency.value,
            )
            .order_by(UserRow.id)
        )
        return [(user_id, email) for user_id, email in (await self.session.execute(stmt)).all()]

    async def upsert(self, user_id: str, **changes) -> NotificationPreferencesRow:
        row = await self.get_for_user(user_id)
        if row is None:
            defaults = NotificationPreferences().model_dump()
            defaults.update(changes)
            return await self.create(id=generate_id("pref_"), user_id=user_id, **defaults)
        return await self.update(row, **changes)
