"""In-app notification rows, one per user and package version."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from npmsync.db.base import Base, utcnow


class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "package_name", "new_version", name="uq_notification_user_package_version"
        ),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_name: Mapped[str] = mapped_column(String(214), nullable=False)
    new_version: Mapped[str] = mapped_column(String(256), nullable=False)
    previous_version: Mapped[str | None] = mapped_column(String(256), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    is_security_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_breaking_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    changelog_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    vulnerabilities_fixed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
