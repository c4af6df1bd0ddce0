"""Resumable full-registry backfill driven by periodic ticks.

State machine::

    idle -> running -> paused -> running
                    -> completed
                    -> error
    (any) -> idle      via reset

The single ``backfill_state`` row is only written through compare-and-swap
on its ``version`` column. Ticks run one at a time on the backfill queue
(concurrency 1). Each tick either continues the registry listing from the
stored cursor or queues the next batch of stored package names.
"""

import logging
import math
import time
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from npmsync.errors.exceptions import ConflictError, ListingFetchError
from npmsync.models.backfill import BackfillState, BackfillStatusReport
from npmsync.models.enums import BackfillStatus
from npmsync.models.jobs import BACKFILL_TICK, BackfillTickJob, JobEnvelope
from npmsync.models.registry import ListingPage
from npmsync.registry.listing import PackageLister
from npmsync.repositories.sync_repo import BackfillPackageRepository, BackfillStateRepository
from npmsync.services.sync import enqueue_sync
from npmsync.workers.base import BaseWorker, Completed, JobOutcome
from npmsync.workers.queue import JobQueue

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Human-readable duration: ``42s``, ``3m 5s``, ``2h 14m``, or ``N/A``."""
    if not seconds or seconds < 0 or not math.isfinite(seconds):
        return "N/A"
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _apply(state: BackfillState, changes: dict) -> BackfillState:
    """The state as it reads after a successful compare-and-swap of ``changes``."""
    return BackfillState.model_validate({**state.model_dump(), **changes, "version": state.version + 1})


class BackfillOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lister: PackageLister,
        sync_queue: JobQueue,
        backfill_queue: JobQueue,
        batch_size: int = 500,
        tick_interval: float = 5.0,
        enqueue_during_listing: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.lister = lister
        self.sync_queue = sync_queue
        self.backfill_queue = backfill_queue
        self.batch_size = batch_size
        self.tick_interval = tick_interval
        self.enqueue_during_listing = enqueue_during_listing
        self.clock = clock

    @classmethod
    def from_settings(cls, session_factory, lister, sync_queue, backfill_queue, settings) -> "BackfillOrchestrator":
        return cls(
            session_factory,
            lister,
            sync_queue,
            backfill_queue,
            batch_size=settings.backfill_batch_size,
            tick_interval=settings.backfill_tick_interval,
            enqueue_during_listing=settings.backfill_enqueue_during_listing,
        )

    # ------------------------------------------------------------------
    # State store
    # ------------------------------------------------------------------

    async def get_state(self) -> BackfillState:
        async with self.session_factory() as session:
            row = await BackfillStateRepository(session).load()
            await session.commit()
            return BackfillState.model_validate(row)

    async def _swap(self, expected: BackfillState, **changes) -> BackfillState | None:
        """Conditionally write ``changes``; None when another writer got there first."""
        async with self.session_factory() as session:
            swapped = await BackfillStateRepository(session).compare_and_swap(expected.version, **changes)
            if not swapped:
                await session.rollback()
                return None
            await session.commit()
        return _apply(expected, changes)

    async def _transition(self, allowed: set[BackfillStatus], action: str, **changes) -> BackfillState:
        state = await self.get_state()
        if state.status not in allowed:
            raise ConflictError(
                f"Cannot {action} backfill while it is {state.status.value}",
                {"status": state.status.value},
            )
        updated = await self._swap(state, **changes)
        if updated is None:
            raise ConflictError(f"Backfill state changed during {action}, try again")
        return updated

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def start(self, schedule: bool = True) -> BackfillState:
        """Move from idle to running and (by default) queue the first tick."""
        state = await self.get_state()
        if state.status == BackfillStatus.RUNNING:
            raise ConflictError("Backfill already running. Pause it first to start a new one.")
        if state.status != BackfillStatus.IDLE:
            raise ConflictError(
                f"Backfill is {state.status.value}; reset it before starting a new one",
                {"status": state.status.value},
            )

        async with self.session_factory() as session:
            await BackfillPackageRepository(session).clear()
            await session.commit()

        updated = await self._swap(
            state,
            status=BackfillStatus.RUNNING.value,
            total=0,
            offset=0,
            rate=0.0,
            started_at=self.clock(),
            error_message=None,
            listing_cursor=None,
            listing_complete=False,
        )
        if updated is None:
            raise ConflictError("Backfill state changed during start, try again")
        logger.info("Starting full registry sync")
        if schedule:
            await self.schedule_tick()
        return updated

    async def start_backfill_process(self) -> BackfillState:
        """Start and run the whole listing inline, queuing pages as they arrive.

        A listing failure marks the backfill as errored and is re-raised.
        """
        state = await self.start(schedule=False)
        try:
            state = await self._run_listing(state)
        except ListingFetchError as exc:
            await self._mark_error(exc.message)
            raise
        if state.status == BackfillStatus.RUNNING and state.listing_complete and state.offset >= state.total:
            state = await self._complete(state)
        return state

    async def pause(self) -> BackfillState:
        state = await self._transition({BackfillStatus.RUNNING}, "pause", status=BackfillStatus.PAUSED.value)
        logger.info("Backfill paused at %d/%d", state.offset, state.total)
        return state

    async def resume(self) -> BackfillState:
        state = await self._transition({BackfillStatus.PAUSED}, "resume", status=BackfillStatus.RUNNING.value)
        await self.schedule_tick()
        logger.info("Backfill resumed at %d/%d", state.offset, state.total)
        return state

    async def reset(self) -> BackfillState:
        """Return to idle from any state and discard pending ticks."""
        while True:
            state = await self.get_state()
            updated = await self._swap(
                state,
                status=BackfillStatus.IDLE.value,
                total=0,
                offset=0,
                rate=0.0,
                started_at=None,
                error_message=None,
                listing_cursor=None,
                listing_complete=False,
            )
            if updated is not None:
                break
        async with self.session_factory() as session:
            await BackfillPackageRepository(session).clear()
            await session.commit()
        drained = await self.backfill_queue.drain()
        logger.info("Backfill reset to idle (%d pending ticks dropped)", drained)
        return updated

    async def status_report(self) -> BackfillStatusReport:
        state = await self.get_state()
        progress = f"{state.offset / state.total * 100:.2f}%" if state.total > 0 else "0%"
        started_at = _utc(state.started_at)
        elapsed = (self.clock() - started_at).total_seconds() if started_at else 0
        eta = (state.total - state.offset) / state.rate if state.rate > 0 else 0
        return BackfillStatusReport(
            status=state.status,
            total=state.total,
            offset=state.offset,
            remaining=state.total - state.offset,
            started_at=started_at,
            rate=state.rate,
            error_message=state.error_message,
            listing_complete=state.listing_complete,
            progress=progress,
            elapsed=format_duration(elapsed),
            eta=format_duration(eta),
        )

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def schedule_tick(self, delay: float = 0.0) -> str | None:
        job_id = f"backfill-tick-{int(time.time() * 1000)}"
        return await self.backfill_queue.enqueue(BackfillTickJob(), BACKFILL_TICK.with_id(job_id, delay=delay))

    async def schedule_next_tick(self) -> None:
        try:
            running = (await self.get_state()).status == BackfillStatus.RUNNING
        except SQLAlchemyError as exc:
            logger.warning("Could not read backfill state, scheduling the next tick anyway: %s", exc)
            running = True
        if running:
            await self.schedule_tick(delay=self.tick_interval)

    async def recover(self) -> bool:
        """Make sure a running backfill has a tick on its way.

        Called on worker startup so a crash mid-backfill resumes on its own.
        A tick whose worker died is put back on the queue; otherwise a fresh
        tick is queued when none is pending. Returns True when either happened.
        """
        state = await self.get_state()
        logger.info("Backfill state: status=%s, total=%d, offset=%d", state.status, state.total, state.offset)
        if state.status != BackfillStatus.RUNNING:
            return False
        if await self.backfill_queue.reclaim_stalled():
            logger.info("Re-queued the tick of a crashed worker")
            return True
        counts = await self.backfill_queue.counts()
        if counts.pending:
            logger.info("Found %d pending tick(s), skipping", counts.pending)
            return False
        logger.info("No pending ticks, scheduling one now")
        await self.schedule_tick()
        return True

    async def tick(self) -> BackfillState:
        state = await self.get_state()
        if state.status != BackfillStatus.RUNNING:
            return state

        if not state.listing_complete:
            try:
                state = await self._run_listing(state)
            except ListingFetchError as exc:
                logger.error("Backfill listing failed: %s", exc.message)
                return await self._mark_error(exc.message)
            if state.status != BackfillStatus.RUNNING or not state.listing_complete:
                return state

        if state.offset >= state.total:
            return await self._complete(state)

        async with self.session_factory() as session:
            names = await BackfillPackageRepository(session).batch(state.offset, self.batch_size)
        if not names:
            logger.info("No more packages to process")
            return await self._complete(state)

        await enqueue_sync(self.sync_queue, names)
        new_offset = state.offset + len(names)
        elapsed = (self.clock() - _utc(state.started_at)).total_seconds() if state.started_at else 0
        rate = new_offset / elapsed if elapsed > 0 else 0.0

        updated = await self._swap(state, offset=new_offset, rate=rate)
        if updated is None:
            logger.warning("Backfill state changed during tick, batch at offset %d not recorded", state.offset)
            return await self.get_state()

        eta = (state.total - new_offset) / rate if rate > 0 else 0
        logger.info(
            "Progress: %d/%d (%.2f%%) | Rate: %.1f/s | ETA: %s",
            new_offset, state.total, new_offset / state.total * 100, rate, format_duration(eta),
        )
        return updated

    async def _run_listing(self, state: BackfillState) -> BackfillState:
        """List the registry from the stored cursor, one committed page at a time."""
        if state.listing_cursor:
            logger.info("Resuming registry listing after %r (%d listed)", state.listing_cursor, state.total)
        else:
            logger.info("Listing the full registry, queuing packages as pages arrive")

        pages = 0
        async for page in self.lister.iter_pages(state.listing_cursor, already_listed=state.total):
            pages += 1
            updated = await self._record_page(state, page)
            if updated is None:
                current = await self.get_state()
                logger.info("Listing stopped: backfill is now %s", current.status)
                return current
            state = updated
            if page.names:
                pct = page.cumulative_count / page.estimated_total * 100 if page.estimated_total else 0
                logger.info(
                    "Queued batch %d: %d packages | Total: %d/%d (%.1f%%)",
                    pages, len(page.names), page.cumulative_count, page.estimated_total, pct,
                )

        finished = await self._swap(state, listing_complete=True)
        if finished is None:
            return await self.get_state()
        logger.info("Listing complete: %d packages", finished.total)
        return finished

    async def _record_page(self, state: BackfillState, page: ListingPage) -> BackfillState | None:
        if page.names and self.enqueue_during_listing:
            await enqueue_sync(self.sync_queue, page.names)

        changes = {"total": state.total + len(page.names), "listing_cursor": page.last_key}
        if self.enqueue_during_listing:
            changes["offset"] = changes["total"]

        async with self.session_factory() as session:
            await BackfillPackageRepository(session).append(state.total, page.names)
            swapped = await BackfillStateRepository(session).compare_and_swap(state.version, **changes)
            if not swapped:
                await session.rollback()
                return None
            await session.commit()
        return _apply(state, changes)

    async def _complete(self, state: BackfillState) -> BackfillState:
        updated = await self._swap(state, status=BackfillStatus.COMPLETED.value)
        if updated is None:
            return await self.get_state()
        logger.info("Backfill completed: %d packages queued", updated.total)
        return updated

    async def _mark_error(self, message: str) -> BackfillState:
        while True:
            state = await self.get_state()
            if state.status != BackfillStatus.RUNNING:
                return state
            updated = await self._swap(state, status=BackfillStatus.ERROR.value, error_message=message)
            if updated is not None:
                return updated


class BackfillTickWorker(BaseWorker):
    """Runs orchestrator ticks from the backfill queue."""

    def __init__(self, orchestrator: BackfillOrchestrator):
        self.orchestrator = orchestrator

    async def process(self, payload: BackfillTickJob) -> JobOutcome:
        state = await self.orchestrator.tick()
        return Completed({"status": state.status.value, "offset": state.offset, "total": state.total})

    async def on_completed(self, envelope: JobEnvelope) -> None:
        await self.orchestrator.schedule_next_tick()

    async def on_failed(self, envelope: JobEnvelope, error: str) -> None:
        # The failure may be the database itself, so no status read here;
        # a tick that finds the backfill stopped ends the chain on completion
        logger.error("Backfill tick failed: %s", error)
        await self.orchestrator.schedule_tick(delay=self.orchestrator.tick_interval)
