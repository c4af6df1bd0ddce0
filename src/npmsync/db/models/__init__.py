"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from npmsync.db.models.user import (
    FavoriteRow,
    IntegrationConnectionRow,
    NotificationPreferencesRow,
    UserRow,
)
from npmsync.db.models.notification import NotificationRow
from npmsync.db.models.sync import BackfillPackageRow, BackfillStateRow, SyncCursorRow

__all__ = [
    "UserRow",
    "FavoriteRow",
    "NotificationPreferencesRow",
    "IntegrationConnectionRow",
    "NotificationRow",
    "BackfillStateRow",
    "BackfillPackageRow",
    "SyncCursorRow",
]
