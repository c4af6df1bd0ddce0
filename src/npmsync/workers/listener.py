"""Change-feed listener: turns registry changes into sync jobs."""

import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from npmsync.errors.exceptions import UpstreamError
from npmsync.registry.changes import ChangeFeedClient
from npmsync.registry.client import RegistryClient
from npmsync.registry.results import Fetched
from npmsync.repositories.sync_repo import SyncCursorRepository
from npmsync.services.sync import enqueue_sync
from npmsync.workers.queue import JobQueue

logger = logging.getLogger(__name__)

FEED_NAME = "npm-registry"


class ChangeListener:
    """Follows the change feed from a persisted cursor.

    The cursor is written every ``commit_every`` events and when the
    listener stops, so a restart redelivers at most that many events.
    """

    def __init__(
        self,
        feed: ChangeFeedClient,
        client: RegistryClient,
        sync_queue: JobQueue,
        session_factory: async_sessionmaker[AsyncSession],
        commit_every: int = 100,
        stats_interval: float = 30.0,
    ):
        self.feed = feed
        self.client = client
        self.sync_queue = sync_queue
        self.session_factory = session_factory
        self.commit_every = commit_every
        self.stats_interval = stats_interval
        self.last_sequence: int | None = None
        self._committed: int | None = None
        self._queued_since_stats = 0
        self._stats_started = time.monotonic()

    async def initial_cursor(self) -> int:
        """Stored cursor, or the registry head when none is stored."""
        async with self.session_factory() as session:
            stored = await SyncCursorRepository(session).get_sequence(FEED_NAME)
        if stored is not None:
            logger.info("Resuming change feed from stored sequence %d", stored)
            return stored

        result = await self.client.fetch_update_seq()
        if not isinstance(result, Fetched):
            raise UpstreamError(
                "REGISTRY_UNAVAILABLE", "Could not read the registry's current sequence",
                {"reason": result.reason},
            )
        logger.info("No stored cursor, starting at registry sequence %d", result.value)
        return result.value

    async def save_cursor(self) -> None:
        if self.last_sequence is None or self.last_sequence == self._committed:
            return
        async with self.session_factory() as session:
            await SyncCursorRepository(session).save(FEED_NAME, self.last_sequence)
            await session.commit()
        self._committed = self.last_sequence
        logger.debug("Committed change feed cursor %d", self.last_sequence)

    async def run(self) -> None:
        """Follow the feed until cancelled or until its retries are exhausted."""
        since = await self.initial_cursor()
        self.last_sequence = self._committed = since
        pending = 0
        try:
            async for event in self.feed.stream_changes(since):
                await enqueue_sync(self.sync_queue, [event.package_name], event.sequence_id, event.deleted)
                self.last_sequence = event.sequence_id
                self._queued_since_stats += 1
                pending += 1
                if pending >= self.commit_every:
                    await self.save_cursor()
                    pending = 0
                await self._maybe_log_stats()
        finally:
            await self.save_cursor()
            await self.log_stats()

    async def _maybe_log_stats(self) -> None:
        if time.monotonic() - self._stats_started >= self.stats_interval:
            await self.log_stats()

    async def log_stats(self) -> None:
        elapsed = max(time.monotonic() - self._stats_started, 1e-9)
        counts = await self.sync_queue.counts()
        logger.info(
            "Queued %d jobs (%.1f/s) | Queue: %d waiting, %d active, %d failed | seq %s",
            self._queued_since_stats, self._queued_since_stats / elapsed,
            counts.waiting, counts.active, counts.failed, self.last_sequence,
        )
        self._queued_since_stats = 0
        self._stats_started = time.monotonic()
