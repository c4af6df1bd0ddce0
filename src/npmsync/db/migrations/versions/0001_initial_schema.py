"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "favorites",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("package_name", sa.String(214), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "package_name", name="uq_favorite_user_package"),
    )
    op.create_index("ix_favorites_user_id", "favorites", ["user_id"])
    op.create_index("ix_favorites_package_name", "favorites", ["package_name"])

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column(
            "user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("notify_all_updates", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_major_only", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_security_only", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("in_app_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("chat_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_digest_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_digest_frequency", sa.String(20), nullable=False, server_default="daily"),
        sa.Column("email_immediate_critical", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "integration_connections",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("config", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_integration_connections_user_id", "integration_connections", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("package_name", sa.String(214), nullable=False),
        sa.Column("new_version", sa.String(256), nullable=False),
        sa.Column("previous_version", sa.String(256), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("is_security_update", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_breaking_change", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("changelog_snippet", sa.Text(), nullable=True),
        sa.Column("vulnerabilities_fixed", sa.Integer(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "package_name", "new_version", name="uq_notification_user_package_version"
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    op.create_table(
        "backfill_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="idle"),
        sa.Column("total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("offset", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("listing_cursor", sa.String(214), nullable=True),
        sa.Column("listing_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_table(
        "backfill_packages",
        sa.Column("position", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("package_name", sa.String(214), nullable=False),
    )
    op.create_table(
        "sync_cursors",
        sa.Column("feed", sa.String(64), primary_key=True),
        sa.Column("sequence_id", sa.BigInteger(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("sync_cursors")
    op.drop_table("backfill_packages")
    op.drop_table("backfill_state")
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_integration_connections_user_id", table_name="integration_connections")
    op.drop_table("integration_connections")
    op.drop_table("notification_preferences")
    op.drop_index("ix_favorites_package_name", table_name="favorites")
    op.drop_index("ix_favorites_user_id", table_name="favorites")
    op.drop_table("favorites")
    op.drop_table("users")
