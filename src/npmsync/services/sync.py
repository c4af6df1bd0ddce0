"""Per-package sync jobs: producing them and refreshing the search index."""

import logging

from npmsync.cache import Cache, CacheKey
from npmsync.errors.exceptions import SearchIndexError
from npmsync.models.jobs import STANDARD, SyncPackageJob
from npmsync.registry.client import RegistryClient
from npmsync.registry.results import Fetched, PermanentFailure
from npmsync.search.index import SearchIndex
from npmsync.services.enrichment import UpdateEnricher, build_search_document, document_hash
from npmsync.services.notification_dispatcher import NotificationDispatcher
from npmsync.workers.base import BaseWorker, Completed, Failed, JobOutcome, RetryLater
from npmsync.workers.queue import JobQueue

logger = logging.getLogger(__name__)


def sync_job_id(package_name: str) -> str:
    return f"sync-{package_name}"


async def enqueue_sync(
    queue: JobQueue,
    package_names: list[str],
    sequence_id: int | None = None,
    deleted: bool = False,
) -> int:
    """Queue one sync job per package, keyed by name. Returns how many were new."""
    payloads = [
        SyncPackageJob(package_name=name, sequence_id=sequence_id, deleted=deleted)
        for name in package_names
    ]
    options = [STANDARD.with_id(sync_job_id(name)) for name in package_names]
    return await queue.enqueue_many(payloads, options)


class SyncWorker(BaseWorker):
    """Refreshes one package's search document and detects new releases.

    A version change relative to the last one this worker saw triggers
    notification dispatch. The first sighting of a package only records its
    version, so a backfill never notifies.
    """

    def __init__(
        self,
        client: RegistryClient,
        index: SearchIndex,
        cache: Cache,
        enricher: UpdateEnricher,
        dispatcher: NotificationDispatcher | None,
        state_ttl: int,
        downloads_ttl: int,
    ):
        self.client = client
        self.index = index
        self.cache = cache
        self.enricher = enricher
        self.dispatcher = dispatcher
        self.state_ttl = state_ttl
        self.downloads_ttl = downloads_ttl

    async def process(self, payload: SyncPackageJob) -> JobOutcome:
        name = payload.package_name
        if payload.deleted:
            return await self._remove(name, "deleted upstream")

        result = await self.client.fetch_packument(name)
        if isinstance(result, PermanentFailure):
            return await self._remove(name, result.reason)
        if not isinstance(result, Fetched):
            return RetryLater(f"packument fetch for {name}: {result.reason}")

        packument = result.value
        if (packument.get("time") or {}).get("unpublished") or not packument.get("versions"):
            return await self._remove(name, "unpublished")

        document = build_search_document(packument)
        content_hash = document_hash(document)
        if await self.cache.get(CacheKey.document_hash(name)) == content_hash:
            logger.debug("%s unchanged, skipping", name)
            return Completed({"package": name, "action": "unchanged"})

        document["downloads_weekly"] = await self._weekly_downloads(name)
        try:
            await self.index.upsert(document)
        except SearchIndexError as exc:
            if exc.transient:
                return RetryLater(exc.message)
            return Failed(exc.message)

        latest = document["version"]
        dispatched = await self._detect_release(name, packument, latest)
        await self.cache.set(CacheKey.document_hash(name), content_hash, self.state_ttl)
        return Completed({"package": name, "action": "upserted", "version": latest, "dispatched": dispatched})

    async def _detect_release(self, name: str, packument: dict, latest: str) -> bool:
        if not latest:
            return False
        version_key = CacheKey.latest_version(name)
        previous = await self.cache.get(version_key)
        dispatched = False
        if previous is not None and previous != latest and self.dispatcher is not None:
            enrichment = await self.enricher.enrich(packument, previous, latest)
            result = await self.dispatcher.dispatch(name, enrichment, previous, latest)
            logger.info(
                "Release %s %s -> %s dispatched (notified=%d, skipped=%d)",
                name, previous, latest, result.notified, result.skipped,
            )
            dispatched = True
        if previous != latest:
            await self.cache.set(version_key, latest, self.state_ttl)
        return dispatched

    async def _weekly_downloads(self, name: str) -> int:
        key = CacheKey.downloads(name)
        cached = await self.cache.get(key)
        if cached is not None:
            return int(cached)
        result = await self.client.fetch_weekly_downloads(name)
        if not isinstance(result, Fetched):
            return 0
        await self.cache.set(key, result.value, self.downloads_ttl)
        return result.value

    async def _remove(self, name: str, reason: str) -> JobOutcome:
        try:
            await self.index.delete(name)
        except SearchIndexError as exc:
            if exc.transient:
                return RetryLater(exc.message)
            return Failed(exc.message)
        await self.cache.delete(CacheKey.document_hash(name))
        logger.info("Removed %s from the index (%s)", name, reason)
        return Completed({"package": name, "action": "deleted"})
