"""Tests for the per-package sync worker."""

import pytest

from npmsync.cache import CacheKey
from npmsync.models.enums import Severity
from npmsync.models.jobs import SyncPackageJob
from npmsync.models.notification import DispatchResult
from npmsync.services.sync import SyncWorker, enqueue_sync
from npmsync.workers.base import Completed, RetryLater
from npmsync.workers.queue import SYNC_QUEUE, InMemoryJobQueue

from helpers import manifest


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    async def dispatch(self, package_name, enrichment, previous_version, new_version):
        self.calls.append((package_name, enrichment, previous_version, new_version))
        return DispatchResult(notified=1)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def worker(runtime, dispatcher):
    return SyncWorker(
        runtime.registry_client,
        runtime.search_index,
        runtime.cache,
        runtime.enricher,
        dispatcher,
        state_ttl=3600,
        downloads_ttl=3600,
    )


def _job(name, **kwargs):
    return SyncPackageJob(package_name=name, **kwargs)


@pytest.mark.asyncio
async def test_enqueue_sync_keys_jobs_by_package_name():
    queue = InMemoryJobQueue(SYNC_QUEUE)
    assert await enqueue_sync(queue, ["react", "lodash"]) == 2
    assert await enqueue_sync(queue, ["react", "chalk"], sequence_id=9) == 1
    assert [job.package_name for job in queue.pending_payloads()] == ["react", "lodash", "chalk"]


@pytest.mark.asyncio
async def test_new_package_is_indexed_without_notifying(worker, runtime, fake_registry, dispatcher):
    fake_registry.add_package("left-pad", [manifest("left-pad", "1.3.0", 2048, description="String left pad")])
    fake_registry.downloads["left-pad"] = 42

    outcome = await worker.process(_job("left-pad"))

    assert isinstance(outcome, Completed)
    assert outcome.detail["action"] == "upserted"
    document = runtime.search_index.documents["left-pad"]
    assert document["version"] == "1.3.0"
    assert document["downloads_weekly"] == 42
    assert document["unpacked_size"] == 2048
    assert dispatcher.calls == []
    assert await runtime.cache.get(CacheKey.latest_version("left-pad")) == "1.3.0"


@pytest.mark.asyncio
async def test_replayed_job_is_a_noop(worker, runtime, fake_registry):
    fake_registry.add_package("left-pad", [manifest("left-pad", "1.3.0")])

    await worker.process(_job("left-pad"))
    outcome = await worker.process(_job("left-pad"))

    assert outcome.detail["action"] == "unchanged"
    assert runtime.search_index.upserts == 1


@pytest.mark.asyncio
async def test_version_change_dispatches_enriched_update(worker, fake_registry, dispatcher):
    v1 = manifest("left-pad", "1.3.0")
    fake_registry.add_package("left-pad", [v1])
    await worker.process(_job("left-pad"))

    fake_registry.add_package("left-pad", [v1, manifest("left-pad", "2.0.0", description="Now with tabs")])
    outcome = await worker.process(_job("left-pad"))

    assert outcome.detail["dispatched"] is True
    (name, enrichment, previous, new), = dispatcher.calls
    assert (name, previous, new) == ("left-pad", "1.3.0", "2.0.0")
    assert enrichment.severity == Severity.IMPORTANT
    assert enrichment.version_analysis.is_breaking_change is True
    assert enrichment.changelog_snippet == "Now with tabs"


@pytest.mark.asyncio
async def test_fixed_advisory_makes_update_critical(worker, fake_registry, dispatcher):
    v1 = manifest("lodash", "4.17.20")
    fake_registry.add_package("lodash", [v1])
    await worker.process(_job("lodash"))

    fake_registry.vulns[("lodash", "4.17.20")] = ["GHSA-p6mc-m468-83gw"]
    fake_registry.add_package("lodash", [v1, manifest("lodash", "4.17.21")])
    await worker.process(_job("lodash"))

    enrichment = dispatcher.calls[0][1]
    assert enrichment.severity == Severity.CRITICAL
    assert enrichment.security_analysis.vulnerabilities_fixed == 1
    assert enrichment.security_analysis.advisory_ids == ["GHSA-p6mc-m468-83gw"]


@pytest.mark.asyncio
async def test_missing_package_is_removed_from_index(worker, runtime, fake_registry):
    fake_registry.add_package("gone", [manifest("gone", "1.0.0")])
    await worker.process(_job("gone"))
    del fake_registry.packuments["gone"]

    outcome = await worker.process(_job("gone"))

    assert outcome.detail["action"] == "deleted"
    assert "gone" not in runtime.search_index.documents
    assert await runtime.cache.get(CacheKey.document_hash("gone")) is None


@pytest.mark.asyncio
async def test_deleted_event_skips_the_fetch(worker, fake_registry):
    outcome = await worker.process(_job("old-pkg", deleted=True))

    assert outcome.detail["action"] == "deleted"
    assert fake_registry.packument_fetches("old-pkg") == 0


@pytest.mark.asyncio
async def test_unpublished_package_is_removed(worker, runtime, fake_registry):
    fake_registry.add_package("pulled", [manifest("pulled", "1.0.0")])
    await worker.process(_job("pulled"))
    fake_registry.packuments["pulled"] = {
        "name": "pulled",
        "time": {"unpublished": {"time": "2024-05-02T00:00:00.000Z"}},
    }

    outcome = await worker.process(_job("pulled"))

    assert outcome.detail["action"] == "deleted"
    assert "pulled" not in runtime.search_index.documents


@pytest.mark.asyncio
async def test_server_error_asks_for_retry(worker, fake_registry):
    fake_registry.fail_packument("react", 503)

    outcome = await worker.process(_job("react"))

    assert isinstance(outcome, RetryLater)
    assert "503" in outcome.reason
