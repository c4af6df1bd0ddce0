"""Pydantic models for package update notifications."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from npmsync.models.enums import DigestFrequency, Severity, UpdateType


class VersionAnalysis(BaseModel):
    update_type: UpdateType = UpdateType.UNKNOWN
    is_breaking_change: bool = False


class SecurityAnalysis(BaseModel):
    is_security_update: bool = False
    vulnerabilities_fixed: int = 0
    advisory_ids: list[str] = Field(default_factory=list)


class UpdateEnrichment(BaseModel):
    """Derived facts about a version change that drive notification urgency."""

    severity: Severity = Severity.INFO
    version_analysis: VersionAnalysis = Field(default_factory=VersionAnalysis)
    security_analysis: SecurityAnalysis = Field(default_factory=SecurityAnalysis)
    changelog_snippet: str | None = None


class NotificationPreferences(BaseModel):
    """Per-user notification switches.

    Field defaults are the values applied when a user has no stored
    preferences record.
    """

    model_config = ConfigDict(from_attributes=True)

    notify_all_updates: bool = False
    notify_major_only: bool = True
    notify_security_only: bool = True
    in_app_enabled: bool = True
    chat_enabled: bool = False
    email_digest_enabled: bool = False
    email_digest_frequency: DigestFrequency = DigestFrequency.DAILY
    email_immediate_critical: bool = True

    def wants(self, severity: Severity, is_security_update: bool) -> bool:
        """Return True when an update of this kind should reach the user."""
        if self.notify_all_updates:
            return True
        if self.notify_security_only and is_security_update:
            return True
        if self.notify_major_only and severity != Severity.INFO:
            return True
        return False


class NotificationPreferencesUpdate(BaseModel):
    """Partial update of notification preferences."""

    model_config = ConfigDict(extra="forbid")

    notify_all_updates: bool | None = None
    notify_major_only: bool | None = None
    notify_security_only: bool | None = None
    in_app_enabled: bool | None = None
    chat_enabled: bool | None = None
    email_digest_enabled: bool | None = None
    email_digest_frequency: DigestFrequency | None = None
    email_immediate_critical: bool | None = None


class FavoritingUser(BaseModel):
    """A user following a package, with effective preferences."""

    user_id: str
    email: str
    preferences: NotificationPreferences


class NotificationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    package_name: str
    new_version: str
    previous_version: str | None = None
    severity: Severity
    is_security_update: bool
    is_breaking_change: bool
    changelog_snippet: str | None = None
    vulnerabilities_fixed: int | None = None
    read: bool
    created_at: datetime


class NotificationList(BaseModel):
    notifications: list[NotificationRecord]
    total: int
    unread_count: int


class UnreadCount(BaseModel):
    total: int
    critical: int


class DispatchResult(BaseModel):
    notified: int = 0
    skipped: int = 0


class DigestResult(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped: int = 0
