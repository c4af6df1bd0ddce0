"""Redis queue and cache tests against fakeredis."""

import asyncio

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from npmsync.cache import RedisCache
from npmsync.models.enums import BackfillStatus
from npmsync.models.jobs import BACKFILL_TICK, STANDARD, Backoff, JobOptions, SyncPackageJob
from npmsync.registry.listing import PackageLister
from npmsync.services.backfill import BackfillOrchestrator
from npmsync.workers.base import Completed
from npmsync.workers.pool import WorkerPool
from npmsync.workers.queue import BACKFILL_QUEUE, SYNC_QUEUE, InMemoryJobQueue, RateLimit, RedisJobQueue

LEFT_PAD = SyncPackageJob(package_name="left-pad")


class Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def queue(redis, clock):
    return RedisJobQueue(SYNC_QUEUE, redis, lease_seconds=60.0, clock=clock)


@pytest.mark.asyncio
async def test_enqueue_with_pending_job_id_is_a_noop(queue):
    assert await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad")) == "sync-left-pad"
    assert await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad")) is None

    counts = await queue.counts()
    assert (counts.waiting, counts.delayed, counts.active) == (1, 0, 0)


@pytest.mark.asyncio
async def test_delayed_job_waits_for_its_ready_time(queue, clock):
    await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad", delay=30))
    counts = await queue.counts()
    assert (counts.waiting, counts.delayed) == (0, 1)

    clock.advance(31)
    envelope = await queue.dequeue(timeout=0.1)

    assert envelope.job_id == "sync-left-pad"
    assert envelope.payload == LEFT_PAD
    counts = await queue.counts()
    assert (counts.waiting, counts.delayed, counts.active) == (0, 0, 1)


@pytest.mark.asyncio
async def test_retry_counts_the_attempt_and_delays_the_job(queue, clock):
    await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad"))
    envelope = await queue.dequeue(timeout=0.1)

    await queue.retry(envelope, 5.0, "HTTP 503")

    counts = await queue.counts()
    assert (counts.waiting, counts.delayed, counts.active) == (0, 1, 0)
    clock.advance(6)
    again = await queue.dequeue(timeout=0.1)
    assert again.attempts_made == 1
    assert again.last_error == "HTTP 503"


@pytest.mark.asyncio
async def test_failed_jobs_are_trimmed_and_ids_freed(queue, redis):
    options = JobOptions(attempts=1, backoff=Backoff(), remove_on_fail=2)
    for name in ("a", "b", "c"):
        await queue.enqueue(SyncPackageJob(package_name=name), options.with_id(f"sync-{name}"))
        envelope = await queue.dequeue(timeout=0.1)
        await queue.fail(envelope, "HTTP 404")

    counts = await queue.counts()
    assert (counts.waiting, counts.active, counts.failed) == (0, 0, 2)
    assert await redis.llen(f"npmsync:queue:{SYNC_QUEUE}:processing") == 0
    assert await queue.enqueue(SyncPackageJob(package_name="a"), options.with_id("sync-a")) == "sync-a"


@pytest.mark.asyncio
async def test_drain_removes_waiting_and_delayed_jobs(queue):
    await queue.enqueue(SyncPackageJob(package_name="a"), STANDARD.with_id("sync-a"))
    await queue.enqueue(SyncPackageJob(package_name="b"), STANDARD.with_id("sync-b"))
    await queue.enqueue(SyncPackageJob(package_name="c"), STANDARD.with_id("sync-c", delay=60))

    assert await queue.drain() == 3

    assert (await queue.counts()).pending == 0
    assert await queue.enqueue(SyncPackageJob(package_name="a"), STANDARD.with_id("sync-a")) == "sync-a"


@pytest.mark.asyncio
async def test_rate_slots_are_shared_per_window(queue, clock):
    clock.now = 1_003.0
    limit = RateLimit(max_jobs=2, duration=10)

    assert await queue.acquire_rate_slot(limit) == 0
    assert await queue.acquire_rate_slot(limit) == 0
    assert await queue.acquire_rate_slot(limit) == pytest.approx(7.0)

    clock.advance(7)
    assert await queue.acquire_rate_slot(limit) == 0


@pytest.mark.asyncio
async def test_job_of_a_crashed_consumer_is_requeued_after_its_lease(queue, redis, clock):
    await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad"))
    taken = await queue.dequeue(timeout=0.1)
    assert taken.job_id == "sync-left-pad"
    # The consumer dies here without settling the job

    assert await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad")) is None
    assert await queue.reclaim_stalled() == 0
    assert (await queue.counts()).active == 1

    clock.advance(61)
    assert (await queue.counts()).active == 0

    # A fresh worker process picks the job up on its first dequeue
    restarted = RedisJobQueue(SYNC_QUEUE, redis, lease_seconds=60.0, clock=clock)
    recovered = await restarted.dequeue(timeout=0.1)
    assert recovered.job_id == "sync-left-pad"
    assert recovered.attempts_made == 0

    await restarted.complete(recovered)
    assert await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad")) == "sync-left-pad"


@pytest.mark.asyncio
async def test_reclaim_moves_expired_jobs_back_to_wait(queue, clock):
    await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad"))
    await queue.dequeue(timeout=0.1)
    clock.advance(61)

    assert await queue.reclaim_stalled() == 1
    assert await queue.reclaim_stalled() == 0
    counts = await queue.counts()
    assert (counts.waiting, counts.active) == (1, 0)


@pytest.mark.asyncio
async def test_renewed_lease_keeps_the_job_reserved(queue, clock):
    await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad"))
    envelope = await queue.dequeue(timeout=0.1)

    clock.advance(40)
    await queue.extend_lease(envelope)
    clock.advance(40)

    assert await queue.reclaim_stalled() == 0
    assert (await queue.counts()).active == 1


@pytest.mark.asyncio
async def test_completed_job_is_not_reclaimed(queue, clock):
    await queue.enqueue(LEFT_PAD, STANDARD.with_id("sync-left-pad"))
    envelope = await queue.dequeue(timeout=0.1)
    await queue.complete(envelope)

    clock.advance(120)
    assert await queue.reclaim_stalled() == 0
    assert (await queue.counts()).pending == 0


@pytest.mark.asyncio
async def test_recover_requeues_the_tick_of_a_crashed_worker(session_factory, registry_client, redis, clock):
    backfill_queue = RedisJobQueue(BACKFILL_QUEUE, redis, lease_seconds=60.0, clock=clock)
    orchestrator = BackfillOrchestrator(
        session_factory,
        PackageLister(registry_client, page_size=3),
        InMemoryJobQueue(SYNC_QUEUE),
        backfill_queue,
    )
    await orchestrator.start()
    tick = await backfill_queue.dequeue(timeout=0.1)
    assert tick.payload.kind == "backfill_tick"
    # Worker crashes mid-tick

    assert await orchestrator.recover() is False
    clock.advance(61)

    assert await orchestrator.recover() is True
    assert (await orchestrator.get_state()).status == BackfillStatus.RUNNING
    counts = await backfill_queue.counts()
    assert (counts.waiting, counts.active) == (1, 0)
    assert (await backfill_queue.dequeue(timeout=0.1)).job_id == tick.job_id


@pytest.mark.asyncio
async def test_pool_renews_the_lease_while_a_job_runs():
    class LeasedQueue(InMemoryJobQueue):
        lease_seconds = 0.03

        def __init__(self, name):
            super().__init__(name)
            self.renewals = 0

        async def extend_lease(self, envelope):
            self.renewals += 1

    async def slow_handler(envelope):
        await asyncio.sleep(0.1)
        return Completed()

    queue = LeasedQueue(BACKFILL_QUEUE)
    pool = WorkerPool(queue, slow_handler)
    await queue.enqueue(SyncPackageJob(package_name="a"), BACKFILL_TICK.with_id("tick-1"))

    action = await pool.process_one(await queue.dequeue(timeout=0.1))

    assert action.action == "complete"
    renewals = queue.renewals
    assert renewals >= 1
    await asyncio.sleep(0.05)
    assert queue.renewals == renewals


@pytest.mark.asyncio
async def test_redis_cache_round_trips_json_with_ttl(redis):
    cache = RedisCache(redis)

    await cache.set("downloads:react", {"weekly": 25_000_000}, ttl=3600)

    assert await cache.get("downloads:react") == {"weekly": 25_000_000}
    assert 0 < await redis.ttl("npmsync:cache:downloads:react") <= 3600
    await cache.delete("downloads:react")
    assert await cache.get("downloads:react") is None


@pytest.mark.asyncio
async def test_redis_cache_errors_are_misses():
    class DownRedis:
        async def get(self, key):
            raise RedisConnectionError("Connection refused")

        async def set(self, key, value, ex=None):
            raise RedisConnectionError("Connection refused")

    cache = RedisCache(DownRedis())
    await cache.set("downloads:react", 1, ttl=60)
    assert await cache.get("downloads:react") is None
