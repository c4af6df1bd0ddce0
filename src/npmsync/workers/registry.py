"""Worker registry mapping job kinds to worker instances."""

import logging

from npmsync.models.enums import JobKind
from npmsync.models.jobs import JobEnvelope
from npmsync.workers.base import BaseWorker, Failed, JobOutcome

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """Routes each job to the worker for its ``kind``.

    Construction fails unless every JobKind has a worker, so a new job kind
    cannot be queued without a handler.
    """

    def __init__(self, workers: dict[JobKind, BaseWorker]):
        missing = [kind.value for kind in JobKind if kind not in workers]
        if missing:
            raise ValueError(f"No worker registered for job kinds: {', '.join(missing)}")
        self._workers = dict(workers)

    def get_worker(self, kind: JobKind | str) -> BaseWorker:
        return self._workers[JobKind(kind)]

    async def handle(self, envelope: JobEnvelope) -> JobOutcome:
        try:
            worker = self.get_worker(envelope.payload.kind)
        except ValueError:
            return Failed(f"unknown job kind {envelope.payload.kind!r}")
        return await worker.execute(envelope)


def build_registry(runtime) -> WorkerRegistry:
    """Wire every worker from the shared runtime collaborators."""
    from npmsync.services.backfill import BackfillTickWorker
    from npmsync.services.delivery import ChatDeliveryWorker, EmailDeliveryWorker
    from npmsync.services.digest import EmailDigestWorker
    from npmsync.services.sync import SyncWorker

    return WorkerRegistry({
        JobKind.SYNC_PACKAGE: SyncWorker(
            runtime.registry_client,
            runtime.search_index,
            runtime.cache,
            runtime.enricher,
            runtime.dispatcher,
            state_ttl=runtime.settings.sync_state_ttl,
            downloads_ttl=runtime.settings.enrichment_cache_ttl,
        ),
        JobKind.BACKFILL_TICK: BackfillTickWorker(runtime.orchestrator),
        JobKind.CHAT_DELIVERY: ChatDeliveryWorker(
            runtime.session_factory, runtime.slack_client, runtime.settings.site_url
        ),
        JobKind.EMAIL_DELIVERY: EmailDeliveryWorker(runtime.email_client, runtime.settings.site_url),
        JobKind.EMAIL_DIGEST: EmailDigestWorker(runtime.digests),
    })
