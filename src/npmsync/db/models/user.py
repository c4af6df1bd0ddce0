"""Users, their favorites, notification preferences and chat integrations."""

from sqlalchemy import JSON, Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from npmsync.db.base import Base, TimestampMixin


class UserRow(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)


class FavoriteRow(Base, TimestampMixin):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "package_name", name="uq_favorite_user_package"),)

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_name: Mapped[str] = mapped_column(String(214), nullable=False, index=True)


class NotificationPreferencesRow(Base, TimestampMixin):
    __tablename__ = "notification_preferences"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    notify_all_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notify_major_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_security_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    in_app_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    chat_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_digest_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_digest_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="daily")
    email_immediate_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class IntegrationConnectionRow(Base, TimestampMixin):
    __tablename__ = "integration_connections"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Slack: {"channel_id": ..., "access_token": ...}
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
