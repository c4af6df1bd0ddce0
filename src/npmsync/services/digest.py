"""Periodic email digests of unread notifications.

Users who enable the digest get one email per period listing the unread
in-app notifications created since the previous run. A digest job is queued
for each period at its next run time. When a run finishes, the next one is
queued. Job ids are derived from the run time, so scheduling the same run
twice (two workers starting at once) queues it only once.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from npmsync.integrations.email import EmailClient, render_digest
from npmsync.models.enums import DigestFrequency
from npmsync.models.jobs import DIGEST, EmailDigestJob, JobEnvelope
from npmsync.models.notification import DigestResult, NotificationRecord
from npmsync.registry.results import Fetched
from npmsync.repositories.notification_repo import NotificationRepository
from npmsync.repositories.user_repo import PreferencesRepository
from npmsync.workers.base import BaseWorker, Completed, JobOutcome
from npmsync.workers.queue import JobQueue

logger = logging.getLogger(__name__)

DIGEST_WINDOWS = {
    DigestFrequency.DAILY: timedelta(days=1),
    DigestFrequency.WEEKLY: timedelta(days=7),
}


def next_digest_run(period: DigestFrequency, now: datetime, hour: int) -> datetime:
    """First run strictly after ``now``: daily at ``hour`` UTC, weekly on Monday at ``hour``."""
    candidate = now.astimezone(timezone.utc).replace(hour=hour, minute=0, second=0, microsecond=0)
    if period == DigestFrequency.WEEKLY:
        candidate -= timedelta(days=candidate.weekday())
        step = timedelta(days=7)
    else:
        step = timedelta(days=1)
    while candidate <= now:
        candidate += step
    return candidate


def digest_job_id(period: DigestFrequency, run_at: datetime) -> str:
    return f"email-digest-{period.value}-{run_at:%Y%m%d%H}"


class DigestService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email: EmailClient,
        queue: JobQueue,
        site_url: str,
        hour: int = 9,
        max_updates: int = 50,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.email = email
        self.queue = queue
        self.site_url = site_url
        self.hour = hour
        self.max_updates = max_updates
        self.clock = clock

    async def schedule(self, period: DigestFrequency) -> str | None:
        now = self.clock()
        run_at = next_digest_run(period, now, self.hour)
        return await self.queue.enqueue(
            EmailDigestJob(period=period),
            DIGEST.with_id(digest_job_id(period, run_at), delay=(run_at - now).total_seconds()),
        )

    async def schedule_all(self) -> None:
        for period in DigestFrequency:
            if await self.schedule(period):
                logger.info("Scheduled the next %s digest", period.value)

    async def process_digests(self, period: DigestFrequency) -> DigestResult:
        since = self.clock() - DIGEST_WINDOWS[period]
        async with self.session_factory() as session:
            recipients = await PreferencesRepository(session).list_digest_recipients(period)
            batches = []
            for user_id, email in recipients:
                rows = await NotificationRepository(session).list_unread_since(user_id, since, self.max_updates)
                batches.append((user_id, email, [NotificationRecord.model_validate(row) for row in rows]))

        result = DigestResult()
        for user_id, email, updates in batches:
            if not updates:
                result.skipped += 1
                continue
            subject, body = render_digest(period, updates, self.site_url)
            sent = await self.email.send(email, subject, body)
            if isinstance(sent, Fetched):
                result.sent += 1
            else:
                # Not retried: a job retry would resend every digest of this run
                result.failed += 1
                logger.warning("%s digest for user %s not sent: %s", period.value, user_id, sent.reason)

        logger.info(
            "%s digest complete: %d sent, %d failed, %d skipped",
            period.value, result.sent, result.failed, result.skipped,
        )
        return result


class EmailDigestWorker(BaseWorker):
    def __init__(self, digests: DigestService):
        self.digests = digests

    async def process(self, payload: EmailDigestJob) -> JobOutcome:
        logger.info("Processing %s digest job", payload.period.value)
        result = await self.digests.process_digests(payload.period)
        return Completed(result.model_dump())

    async def on_completed(self, envelope: JobEnvelope) -> None:
        await self.digests.schedule(envelope.payload.period)

    async def on_failed(self, envelope: JobEnvelope, error: str) -> None:
        logger.error("%s digest failed: %s", envelope.payload.period.value, error)
        await self.digests.schedule(envelope.payload.period)
