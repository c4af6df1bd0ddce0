"""Process-wide collaborators built from settings.

Both the API lifespan and the worker CLI construct one Runtime. In local
mode there is no Redis: queues and the cache live in process memory and
the API runs the worker pools itself.
"""

import asyncio
import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from npmsync.cache import Cache, MemoryCache, RedisCache
from npmsync.config import Settings
from npmsync.db.engine import create_all_tables, create_db_engine, create_session_factory
from npmsync.integrations.email import EmailClient
from npmsync.integrations.slack import SlackClient
from npmsync.registry.advisories import AdvisoryClient
from npmsync.registry.changes import ChangeFeedClient
from npmsync.registry.client import RegistryClient
from npmsync.registry.listing import PackageLister
from npmsync.search.index import InMemoryIndex, SearchIndex, TypesenseIndex
from npmsync.services.backfill import BackfillOrchestrator
from npmsync.services.digest import DigestService
from npmsync.services.enrichment import UpdateEnricher
from npmsync.services.install_size import InstallSizeResolver, InstallSizeService
from npmsync.services.notification_dispatcher import NotificationDispatcher
from npmsync.workers.pool import WorkerPool
from npmsync.workers.queue import (
    ALL_QUEUES,
    BACKFILL_QUEUE,
    CHAT_DELIVERY_QUEUE,
    EMAIL_DELIVERY_QUEUE,
    EMAIL_DIGEST_QUEUE,
    SYNC_QUEUE,
    InMemoryJobQueue,
    JobQueue,
    RateLimit,
    RedisJobQueue,
)

logger = logging.getLogger(__name__)


class Runtime:
    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        redis=None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = create_session_factory(engine)
        self.redis = redis

        self.http = httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
            transport=transport,
        )
        self.registry_client = RegistryClient.from_settings(settings, transport=transport)

        self.cache: Cache = RedisCache(redis) if redis is not None else MemoryCache()
        self.queues: dict[str, JobQueue] = {
            name: RedisJobQueue(name, redis, lease_seconds=settings.queue_lease_seconds)
            if redis is not None
            else InMemoryJobQueue(name)
            for name in ALL_QUEUES
        }

        self.search_index: SearchIndex
        if settings.local_mode and not settings.typesense_api_key:
            self.search_index = InMemoryIndex()
        else:
            self.search_index = TypesenseIndex(
                self.http, settings.typesense_url, settings.typesense_api_key, settings.typesense_collection
            )

        self.advisories = AdvisoryClient(self.http, settings.osv_api_url, self.cache, settings.enrichment_cache_ttl)
        self.enricher = UpdateEnricher(self.advisories)
        self.dispatcher = NotificationDispatcher(
            self.session_factory, self.queues[CHAT_DELIVERY_QUEUE], self.queues[EMAIL_DELIVERY_QUEUE]
        )
        self.lister = PackageLister(self.registry_client, settings.listing_page_size)
        self.change_feed = ChangeFeedClient.from_settings(self.registry_client, settings)
        self.orchestrator = BackfillOrchestrator.from_settings(
            self.session_factory, self.lister, self.sync_queue, self.queues[BACKFILL_QUEUE], settings
        )
        self.resolver = InstallSizeResolver.from_settings(self.registry_client.fetch_packument, settings)
        self.install_size = InstallSizeService(self.resolver, self.cache, settings.install_size_cache_ttl)
        self.slack_client = SlackClient(self.http, settings.slack_api_url)
        self.email_client = EmailClient(
            self.http, settings.email_api_url, settings.email_api_key, settings.email_from
        )
        self.digests = DigestService(
            self.session_factory,
            self.email_client,
            self.queues[EMAIL_DIGEST_QUEUE],
            settings.site_url,
            hour=settings.digest_hour_utc,
            max_updates=settings.digest_max_updates,
        )

    @classmethod
    async def create(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> "Runtime":
        engine = create_db_engine(settings.effective_database_url)
        if settings.local_mode:
            await create_all_tables(engine)
            logger.info("SQLite tables created (local mode)")
            redis = None
        else:
            import redis.asyncio as aioredis
            redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        return cls(settings, engine, redis=redis, transport=transport)

    @property
    def sync_queue(self) -> JobQueue:
        return self.queues[SYNC_QUEUE]

    @property
    def backfill_queue(self) -> JobQueue:
        return self.queues[BACKFILL_QUEUE]

    def worker_pools(self) -> list[WorkerPool]:
        """One pool per queue, with the concurrency and rate limits each needs."""
        from npmsync.workers.registry import build_registry

        registry = build_registry(self)
        tick_worker = registry.get_worker("backfill_tick")
        digest_worker = registry.get_worker("email_digest")
        s = self.settings
        return [
            WorkerPool(self.sync_queue, registry.handle, concurrency=s.sync_concurrency),
            WorkerPool(
                self.backfill_queue,
                registry.handle,
                concurrency=1,
                on_completed=tick_worker.on_completed,
                on_failed=tick_worker.on_failed,
            ),
            WorkerPool(
                self.queues[CHAT_DELIVERY_QUEUE],
                registry.handle,
                concurrency=s.delivery_concurrency,
                rate_limit=RateLimit(s.chat_rate_limit_max, s.chat_rate_limit_duration),
            ),
            WorkerPool(
                self.queues[EMAIL_DELIVERY_QUEUE],
                registry.handle,
                concurrency=s.delivery_concurrency,
                rate_limit=RateLimit(s.email_rate_limit_max, s.email_rate_limit_duration),
            ),
            WorkerPool(
                self.queues[EMAIL_DIGEST_QUEUE],
                registry.handle,
                concurrency=1,
                on_completed=digest_worker.on_completed,
                on_failed=digest_worker.on_failed,
            ),
        ]

    async def run_workers(self) -> None:
        """Requeue stalled jobs, resume any running backfill and queue the next
        digests, then consume every queue until cancelled."""
        pools = self.worker_pools()
        for queue in self.queues.values():
            try:
                reclaimed = await queue.reclaim_stalled()
                if reclaimed:
                    logger.warning("Requeued %d stalled jobs on %s", reclaimed, queue.name)
            except Exception as exc:
                logger.error("Error reclaiming stalled jobs on %s: %s", queue.name, exc)
        try:
            await self.orchestrator.recover()
        except Exception as exc:
            logger.error("Error checking for pending backfills: %s", exc)
        try:
            await self.digests.schedule_all()
        except Exception as exc:
            logger.error("Error scheduling email digests: %s", exc)
        try:
            await asyncio.gather(*(pool.run() for pool in pools))
        finally:
            for pool in pools:
                pool.stop()

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.registry_client.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        await self.engine.dispose()
