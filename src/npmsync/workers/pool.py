"""Bounded-concurrency consumers for a single job queue."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from npmsync.logging_config import bind_job_context, clear_context
from npmsync.models.jobs import JobEnvelope
from npmsync.workers.base import JobOutcome, QueueAction, next_action
from npmsync.workers.queue import JobQueue, RateLimit

logger = logging.getLogger(__name__)

JobHandler = Callable[[JobEnvelope], Awaitable[JobOutcome]]
CompletedCallback = Callable[[JobEnvelope], Awaitable[None]]
FailedCallback = Callable[[JobEnvelope, str], Awaitable[None]]


class WorkerPool:
    """Runs ``concurrency`` consumers against one queue."""

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 1,
        rate_limit: RateLimit | None = None,
        on_completed: CompletedCallback | None = None,
        on_failed: FailedCallback | None = None,
        poll_timeout: float = 1.0,
    ):
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.rate_limit = rate_limit
        self.on_completed = on_completed
        self.on_failed = on_failed
        self.poll_timeout = poll_timeout
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def run(self) -> None:
        logger.info(
            "Worker pool started (queue=%s, concurrency=%d)", self.queue.name, self.concurrency
        )
        consumers = [asyncio.create_task(self._consume()) for _ in range(self.concurrency)]
        try:
            await asyncio.gather(*consumers)
        finally:
            for task in consumers:
                task.cancel()
            logger.info("Worker pool stopped (queue=%s)", self.queue.name)

    async def _consume(self) -> None:
        while not self._stopping.is_set():
            try:
                if self.rate_limit:
                    wait = await self.queue.acquire_rate_slot(self.rate_limit)
                    if wait > 0:
                        await asyncio.sleep(wait)
                        continue
                envelope = await self.queue.dequeue(timeout=self.poll_timeout)
                if envelope is None:
                    continue
                await self.process_one(envelope)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Queue backend errors: keep the consumer alive
                logger.exception("Queue %s consumer error: %s", self.queue.name, exc)
                await asyncio.sleep(self.poll_timeout)

    async def _renew_lease(self, envelope: JobEnvelope) -> None:
        interval = self.queue.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.extend_lease(envelope)
            except Exception as exc:
                logger.warning("Could not renew lease for job %s: %s", envelope.job_id, exc)

    async def process_one(self, envelope: JobEnvelope) -> QueueAction:
        """Handle one job and settle it on the queue."""
        bind_job_context(envelope.job_id, self.queue.name, envelope.payload.kind)
        heartbeat = (
            asyncio.create_task(self._renew_lease(envelope)) if self.queue.lease_seconds else None
        )
        try:
            outcome = await self.handler(envelope)
            action = next_action(outcome, envelope.attempts_made, envelope.options)

            if action.action == "complete":
                await self.queue.complete(envelope)
                if self.on_completed:
                    await self.on_completed(envelope)
            elif action.action == "retry":
                await self.queue.retry(envelope, action.delay, action.reason or "")
            else:
                await self.queue.fail(envelope, action.reason or "")
                if self.on_failed:
                    await self.on_failed(envelope, action.reason or "")
            return action
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
            clear_context()
