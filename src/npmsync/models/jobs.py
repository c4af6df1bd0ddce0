"""Queue job payloads as a tagged union on ``kind``."""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from npmsync.models.enums import DigestFrequency, Severity


class SyncPackageJob(BaseModel):
    """Refresh one package in the search index. Identity is the package name."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["sync_package"] = "sync_package"
    package_name: str = Field(..., min_length=1)
    sequence_id: int | None = None
    deleted: bool = False


class BackfillTickJob(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["backfill_tick"] = "backfill_tick"


class DeliveryContent(BaseModel):
    """Notification body shared by the chat and email channels."""

    package_name: str
    new_version: str
    previous_version: str | None = None
    severity: Severity
    is_security_update: bool = False
    is_breaking_change: bool = False
    changelog_snippet: str | None = None
    vulnerabilities_fixed: int = 0


class ChatDeliveryJob(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["chat_delivery"] = "chat_delivery"
    integration_id: str
    user_id: str
    notification: DeliveryContent


class EmailDeliveryJob(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["email_delivery"] = "email_delivery"
    to: str
    user_id: str
    template: Literal["critical-alert"] = "critical-alert"
    notification: DeliveryContent


class EmailDigestJob(BaseModel):
    """Mail every user on ``period`` a summary of their unread notifications."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["email_digest"] = "email_digest"
    period: DigestFrequency


JobPayload = Annotated[
    SyncPackageJob | BackfillTickJob | ChatDeliveryJob | EmailDeliveryJob | EmailDigestJob,
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_payload(data: dict) -> JobPayload:
    """Validate a raw payload dict into its concrete job variant."""
    return _payload_adapter.validate_python(data)


class Backoff(BaseModel):
    type: Literal["exponential", "fixed"] = "exponential"
    delay: float = 1.0


class JobOptions(BaseModel):
    """Per-job delivery options understood by every JobQueue implementation."""

    job_id: str | None = None
    delay: float = 0.0
    attempts: int = Field(3, ge=1)
    backoff: Backoff = Field(default_factory=Backoff)
    remove_on_fail: int = 1000

    def with_id(self, job_id: str, delay: float | None = None) -> "JobOptions":
        update: dict = {"job_id": job_id}
        if delay is not None:
            update["delay"] = delay
        return self.model_copy(update=update)


STANDARD = JobOptions(attempts=3, backoff=Backoff(delay=1.0), remove_on_fail=1000)

# 2s, 4s, 8s, 16s, 32s
EXTERNAL_API_RETRY = JobOptions(attempts=5, backoff=Backoff(delay=2.0), remove_on_fail=2000)

BACKFILL_TICK = JobOptions(attempts=1, remove_on_fail=100)

DIGEST = JobOptions(attempts=3, backoff=Backoff(delay=5.0), remove_on_fail=500)


class JobEnvelope(BaseModel):
    """A payload as stored on a queue, with its delivery bookkeeping."""

    job_id: str
    queue: str
    payload: JobPayload
    options: JobOptions
    attempts_made: int = 0
    last_error: str | None = None
