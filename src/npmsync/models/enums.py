"""String enums shared across the sync pipeline."""

from enum import StrEnum


class BackfillStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class Severity(StrEnum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    INFO = "info"


class UpdateType(StrEnum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    PRERELEASE = "prerelease"
    UNKNOWN = "unknown"


class JobKind(StrEnum):
    SYNC_PACKAGE = "sync_package"
    BACKFILL_TICK = "backfill_tick"
    CHAT_DELIVERY = "chat_delivery"
    EMAIL_DELIVERY = "email_delivery"
    EMAIL_DIGEST = "email_digest"


class IntegrationProvider(StrEnum):
    SLACK = "slack"


class DigestFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
