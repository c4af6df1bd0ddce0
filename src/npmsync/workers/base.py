"""Base worker interface and the retry policy for queue jobs."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal

from npmsync.models.jobs import JobEnvelope, JobOptions, JobPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completed:
    detail: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RetryLater:
    """Transient failure; the queue may try again after a backoff delay."""

    reason: str


@dataclass(frozen=True)
class Failed:
    """Permanent failure; retrying cannot help."""

    reason: str


JobOutcome = Completed | RetryLater | Failed


@dataclass(frozen=True)
class QueueAction:
    action: Literal["complete", "retry", "fail"]
    delay: float = 0.0
    reason: str | None = None


def backoff_delay(options: JobOptions, attempt: int) -> float:
    """Delay before the retry that follows ``attempt`` (1-based)."""
    if options.backoff.type == "fixed":
        return options.backoff.delay
    return options.backoff.delay * (2 ** (attempt - 1))


def next_action(outcome: JobOutcome, attempts_made: int, options: JobOptions) -> QueueAction:
    """Decide what the queue does with a job after one attempt."""
    if isinstance(outcome, Completed):
        return QueueAction("complete")
    if isinstance(outcome, Failed):
        return QueueAction("fail", reason=outcome.reason)
    attempt = attempts_made + 1
    if attempt >= options.attempts:
        return QueueAction("fail", reason=f"{outcome.reason} (gave up after {attempt} attempts)")
    return QueueAction("retry", delay=backoff_delay(options, attempt), reason=outcome.reason)


class BaseWorker(ABC):
    """Abstract base class for job workers."""

    @abstractmethod
    async def process(self, payload: JobPayload) -> JobOutcome:
        """Process one job payload and report how it went."""
        ...

    async def execute(self, envelope: JobEnvelope) -> JobOutcome:
        """Run ``process`` and turn unexpected exceptions into a retryable outcome."""
        try:
            outcome = await self.process(envelope.payload)
        except Exception as exc:
            logger.exception(
                "Job %s raised (kind=%s, attempt=%d)",
                envelope.job_id, envelope.payload.kind, envelope.attempts_made + 1,
            )
            return RetryLater(f"{type(exc).__name__}: {exc}")

        if isinstance(outcome, Failed):
            logger.warning("Job %s failed permanently: %s", envelope.job_id, outcome.reason)
        elif isinstance(outcome, RetryLater):
            logger.info("Job %s will be retried: %s", envelope.job_id, outcome.reason)
        return outcome
