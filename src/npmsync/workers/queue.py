"""Durable job queues on Redis, with an in-process fallback for local mode.

Each Redis queue keeps:

* a wait list of job ids and a sorted set of delayed ids scored by ready time;
* a processing list that ``LMOVE`` fills atomically as jobs are taken;
* an ``active`` sorted set scoring each taken id by its lease deadline;
* one JSON envelope per job, written with ``SET NX`` so that enqueuing an id
  that is still pending or running is a no-op.

A consumer renews its lease while it works. When a consumer dies, its lease
runs out and :meth:`RedisJobQueue.reclaim_stalled` moves the job back onto
the wait list, so the id is neither lost nor locked forever.
"""

import asyncio
import json
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from npmsync.models.jobs import STANDARD, JobEnvelope, JobOptions, JobPayload

logger = logging.getLogger(__name__)

SYNC_QUEUE = "npm-sync"
BACKFILL_QUEUE = "npm-backfill"
CHAT_DELIVERY_QUEUE = "chat-delivery"
EMAIL_DELIVERY_QUEUE = "email-delivery"
EMAIL_DIGEST_QUEUE = "email-digest"

ALL_QUEUES = (SYNC_QUEUE, BACKFILL_QUEUE, CHAT_DELIVERY_QUEUE, EMAIL_DELIVERY_QUEUE, EMAIL_DIGEST_QUEUE)

DEFAULT_LEASE_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimit:
    """At most ``max_jobs`` job starts per ``duration`` seconds, queue-wide."""

    max_jobs: int
    duration: float


@dataclass(frozen=True)
class QueueCounts:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    failed: int = 0

    @property
    def pending(self) -> int:
        return self.waiting + self.delayed + self.active


class JobQueue(ABC):
    """Interface every queue backend implements."""

    # Seconds a taken job stays reserved without a renewal; None means no leases
    lease_seconds: float | None = None

    def __init__(self, name: str):
        self.name = name

    def _new_envelope(self, payload: JobPayload, options: JobOptions) -> JobEnvelope:
        return JobEnvelope(
            job_id=options.job_id or uuid.uuid4().hex,
            queue=self.name,
            payload=payload,
            options=options,
        )

    @abstractmethod
    async def enqueue(self, payload: JobPayload, options: JobOptions = STANDARD) -> str | None:
        """Add a job. Returns its id, or None when the id is already pending."""
        ...

    @abstractmethod
    async def dequeue(self, timeout: float = 1.0) -> JobEnvelope | None:
        """Take the next ready job, waiting up to ``timeout`` seconds."""
        ...

    @abstractmethod
    async def complete(self, envelope: JobEnvelope) -> None: ...

    @abstractmethod
    async def retry(self, envelope: JobEnvelope, delay: float, error: str) -> None: ...

    @abstractmethod
    async def fail(self, envelope: JobEnvelope, error: str) -> None: ...

    @abstractmethod
    async def counts(self) -> QueueCounts:
        """Job counts. ``active`` only includes jobs whose lease is still live."""
        ...

    @abstractmethod
    async def drain(self) -> int:
        """Remove every waiting and delayed job. Returns how many were removed."""
        ...

    @abstractmethod
    async def acquire_rate_slot(self, limit: RateLimit) -> float:
        """Claim one job start under ``limit``.

        Returns 0 when the slot was granted, otherwise the number of seconds
        until the current window closes.
        """
        ...

    async def extend_lease(self, envelope: JobEnvelope) -> None:
        """Keep a running job reserved. A no-op for backends without leases."""

    async def reclaim_stalled(self) -> int:
        """Re-queue taken jobs whose consumer stopped renewing. Returns how many."""
        return 0

    async def enqueue_many(self, payloads: list[JobPayload], options: list[JobOptions]) -> int:
        added = 0
        for payload, opts in zip(payloads, options):
            if await self.enqueue(payload, opts):
                added += 1
        return added


class RedisJobQueue(JobQueue):
    """Queue backed by redis.asyncio primitives."""

    def __init__(
        self,
        name: str,
        redis,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(name)
        self.redis = redis
        self.lease_seconds = lease_seconds
        self._clock = clock
        self._prefix = f"npmsync:queue:{name}"

    @property
    def _wait_key(self) -> str:
        return f"{self._prefix}:wait"

    @property
    def _delayed_key(self) -> str:
        return f"{self._prefix}:delayed"

    @property
    def _processing_key(self) -> str:
        return f"{self._prefix}:processing"

    @property
    def _active_key(self) -> str:
        return f"{self._prefix}:active"

    @property
    def _failed_key(self) -> str:
        return f"{self._prefix}:failed"

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    async def enqueue(self, payload: JobPayload, options: JobOptions = STANDARD) -> str | None:
        envelope = self._new_envelope(payload, options)
        created = await self.redis.set(
            self._job_key(envelope.job_id), envelope.model_dump_json(), nx=True
        )
        if not created:
            return None
        if options.delay > 0:
            await self.redis.zadd(self._delayed_key, {envelope.job_id: self._clock() + options.delay})
        else:
            await self.redis.rpush(self._wait_key, envelope.job_id)
        return envelope.job_id

    async def _promote_delayed(self) -> None:
        due = await self.redis.zrangebyscore(self._delayed_key, 0, self._clock(), start=0, num=100)
        for job_id in due:
            # Only the worker whose ZREM succeeds moves the job
            if await self.redis.zrem(self._delayed_key, job_id):
                await self.redis.rpush(self._wait_key, job_id)

    async def reclaim_stalled(self) -> int:
        now = self._clock()
        reclaimed = 0
        for job_id in await self.redis.lrange(self._processing_key, 0, -1):
            # A job taken a moment ago may not have its lease yet
            await self.redis.zadd(self._active_key, {job_id: now + self.lease_seconds}, nx=True)
            deadline = await self.redis.zscore(self._active_key, job_id)
            if deadline is None or deadline > now:
                continue
            # LREM decides which reaper owns the job
            if not await self.redis.lrem(self._processing_key, 1, job_id):
                continue
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self._active_key, job_id)
                pipe.rpush(self._wait_key, job_id)
                await pipe.execute()
            reclaimed += 1
            logger.warning("Queue %s: job %s stalled (lease expired), re-queued", self.name, job_id)
        return reclaimed

    async def dequeue(self, timeout: float = 1.0) -> JobEnvelope | None:
        await self.reclaim_stalled()
        await self._promote_delayed()
        job_id = await self.redis.lmove(self._wait_key, self._processing_key, "LEFT", "RIGHT")
        if job_id is None:
            job_id = await self.redis.blmove(
                self._wait_key, self._processing_key, max(1, math.ceil(timeout)), "LEFT", "RIGHT"
            )
        if job_id is None:
            return None
        await self.redis.zadd(self._active_key, {job_id: self._clock() + self.lease_seconds})
        raw = await self.redis.get(self._job_key(job_id))
        if raw is None:
            # Drained, or finished by a consumer whose lease had lapsed
            await self._release(job_id)
            return None
        return JobEnvelope.model_validate_json(raw)

    async def _release(self, job_id: str) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing_key, 1, job_id)
            pipe.zrem(self._active_key, job_id)
            await pipe.execute()

    async def extend_lease(self, envelope: JobEnvelope) -> None:
        await self.redis.zadd(
            self._active_key, {envelope.job_id: self._clock() + self.lease_seconds}, xx=True
        )

    async def complete(self, envelope: JobEnvelope) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._job_key(envelope.job_id))
            pipe.lrem(self._processing_key, 1, envelope.job_id)
            pipe.zrem(self._active_key, envelope.job_id)
            await pipe.execute()

    async def retry(self, envelope: JobEnvelope, delay: float, error: str) -> None:
        updated = envelope.model_copy(
            update={"attempts_made": envelope.attempts_made + 1, "last_error": error}
        )
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(envelope.job_id), updated.model_dump_json())
            pipe.lrem(self._processing_key, 1, envelope.job_id)
            pipe.zrem(self._active_key, envelope.job_id)
            pipe.zadd(self._delayed_key, {envelope.job_id: self._clock() + delay})
            await pipe.execute()

    async def fail(self, envelope: JobEnvelope, error: str) -> None:
        record = {
            "job_id": envelope.job_id,
            "kind": envelope.payload.kind,
            "attempts": envelope.attempts_made + 1,
            "error": error,
            "failed_at": self._clock(),
        }
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._job_key(envelope.job_id))
            pipe.lrem(self._processing_key, 1, envelope.job_id)
            pipe.zrem(self._active_key, envelope.job_id)
            pipe.lpush(self._failed_key, json.dumps(record))
            pipe.ltrim(self._failed_key, 0, envelope.options.remove_on_fail - 1)
            await pipe.execute()

    async def counts(self) -> QueueCounts:
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._wait_key)
            pipe.zcard(self._delayed_key)
            pipe.zcount(self._active_key, self._clock(), "+inf")
            pipe.llen(self._failed_key)
            waiting, delayed, active, failed = await pipe.execute()
        return QueueCounts(waiting=waiting, delayed=delayed, active=active, failed=failed)

    async def drain(self) -> int:
        waiting = await self.redis.lrange(self._wait_key, 0, -1)
        delayed = await self.redis.zrange(self._delayed_key, 0, -1)
        job_ids = list(waiting) + list(delayed)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._wait_key, self._delayed_key)
            for job_id in job_ids:
                pipe.delete(self._job_key(job_id))
            await pipe.execute()
        return len(job_ids)

    async def acquire_rate_slot(self, limit: RateLimit) -> float:
        now = self._clock()
        window = int(now / limit.duration)
        key = f"{self._prefix}:limiter:{window}"
        used = await self.redis.incr(key)
        if used == 1:
            await self.redis.expire(key, math.ceil(limit.duration) + 1)
        if used <= limit.max_jobs:
            return 0.0
        return (window + 1) * limit.duration - now


class InMemoryJobQueue(JobQueue):
    """Single-process queue for local mode and tests.

    Jobs die with the process, so there are no leases to reclaim.
    """

    def __init__(self, name: str):
        super().__init__(name)
        self._jobs: dict[str, JobEnvelope] = {}
        self._wait: deque[str] = deque()
        self._delayed: dict[str, float] = {}
        self._active: set[str] = set()
        self.failed: list[dict] = []
        self._slots: deque[float] = deque()
        self._ready = asyncio.Event()

    async def enqueue(self, payload: JobPayload, options: JobOptions = STANDARD) -> str | None:
        envelope = self._new_envelope(payload, options)
        if envelope.job_id in self._jobs:
            return None
        self._jobs[envelope.job_id] = envelope
        if options.delay > 0:
            self._delayed[envelope.job_id] = time.monotonic() + options.delay
        else:
            self._wait.append(envelope.job_id)
            self._ready.set()
        return envelope.job_id

    def _promote_delayed(self) -> None:
        now = time.monotonic()
        for job_id, ready_at in sorted(self._delayed.items(), key=lambda item: item[1]):
            if ready_at > now:
                break
            del self._delayed[job_id]
            self._wait.append(job_id)

    async def dequeue(self, timeout: float = 1.0) -> JobEnvelope | None:
        deadline = time.monotonic() + timeout
        while True:
            self._promote_delayed()
            if self._wait:
                job_id = self._wait.popleft()
                self._active.add(job_id)
                return self._jobs[job_id]
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self._ready.clear()
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=min(remaining, 0.05))
            except TimeoutError:
                pass

    async def complete(self, envelope: JobEnvelope) -> None:
        self._active.discard(envelope.job_id)
        self._jobs.pop(envelope.job_id, None)

    async def retry(self, envelope: JobEnvelope, delay: float, error: str) -> None:
        self._active.discard(envelope.job_id)
        self._jobs[envelope.job_id] = envelope.model_copy(
            update={"attempts_made": envelope.attempts_made + 1, "last_error": error}
        )
        self._delayed[envelope.job_id] = time.monotonic() + delay

    async def fail(self, envelope: JobEnvelope, error: str) -> None:
        self._active.discard(envelope.job_id)
        self._jobs.pop(envelope.job_id, None)
        self.failed.insert(0, {"job_id": envelope.job_id, "error": error})
        del self.failed[envelope.options.remove_on_fail:]

    async def counts(self) -> QueueCounts:
        return QueueCounts(
            waiting=len(self._wait),
            delayed=len(self._delayed),
            active=len(self._active),
            failed=len(self.failed),
        )

    async def drain(self) -> int:
        job_ids = list(self._wait) + list(self._delayed)
        for job_id in job_ids:
            self._jobs.pop(job_id, None)
        self._wait.clear()
        self._delayed.clear()
        return len(job_ids)

    async def acquire_rate_slot(self, limit: RateLimit) -> float:
        now = time.monotonic()
        while self._slots and self._slots[0] <= now - limit.duration:
            self._slots.popleft()
        if len(self._slots) < limit.max_jobs:
            self._slots.append(now)
            return 0.0
        return self._slots[0] + limit.duration - now

    def pending_payloads(self) -> list[JobPayload]:
        """Payloads of waiting and delayed jobs, for inspection in tests."""
        return [self._jobs[job_id].payload for job_id in list(self._wait) + list(self._delayed)]
