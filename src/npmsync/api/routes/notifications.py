"""In-app notifications and notification preferences for the calling user."""

from fastapi import APIRouter, Query

from npmsync.dependencies import DBSession, UserId
from npmsync.errors.exceptions import NotFoundError
from npmsync.models.common import SuccessResponse
from npmsync.models.enums import Severity
from npmsync.models.notification import (
    NotificationList,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    NotificationRecord,
    UnreadCount,
)
from npmsync.repositories.notification_repo import NotificationRepository
from npmsync.repositories.user_repo import PreferencesRepository, UserRepository

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationList)
async def list_notifications(
    user_id: UserId,
    db: DBSession,
    severity: Severity | None = None,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> NotificationList:
    repo = NotificationRepository(db)
    rows = await repo.list_for_user(user_id, limit, offset, unread_only, severity)
    return NotificationList(
        notifications=[NotificationRecord.model_validate(row) for row in rows],
        total=await repo.count_for_user(user_id, unread_only, severity),
        unread_count=await repo.count_for_user(user_id, unread_only=True),
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(user_id: UserId, db: DBSession) -> UnreadCount:
    repo = NotificationRepository(db)
    return UnreadCount(
        total=await repo.count_for_user(user_id, unread_only=True),
        critical=await repo.count_unread_critical(user_id),
    )


@router.patch("/{notification_id}/read", response_model=SuccessResponse)
async def mark_read(notification_id: str, user_id: UserId, db: DBSession) -> SuccessResponse:
    if not await NotificationRepository(db).mark_read(notification_id, user_id):
        raise NotFoundError("Notification", notification_id)
    await db.commit()
    return SuccessResponse(message="Notification marked as read")


@router.post("/read-all", response_model=SuccessResponse)
async def mark_all_read(user_id: UserId, db: DBSession) -> SuccessResponse:
    updated = await NotificationRepository(db).mark_all_read(user_id)
    await db.commit()
    return SuccessResponse(message=f"{updated} notifications marked as read")


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(user_id: UserId, db: DBSession) -> NotificationPreferences:
    """Stored preferences, or the defaults when the user never saved any."""
    row = await PreferencesRepository(db).get_for_user(user_id)
    return NotificationPreferences.model_validate(row) if row else NotificationPreferences()


@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    body: NotificationPreferencesUpdate, user_id: UserId, db: DBSession
) -> NotificationPreferences:
    if await UserRepository(db).get(user_id) is None:
        raise NotFoundError("User", user_id)
    changes = body.model_dump(exclude_none=True, mode="json")
    row = await PreferencesRepository(db).upsert(user_id, **changes)
    await db.commit()
    return NotificationPreferences.model_validate(row)
