"""Change-feed client: an endless, resumable stream of registry changes."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from npmsync.errors.exceptions import ChangeFeedExhaustedError
from npmsync.models.registry import ChangeEvent
from npmsync.registry.client import RegistryClient, is_internal_id, parse_sequence
from npmsync.registry.results import (
    Fetched,
    PermanentFailure,
    RetryPolicy,
    should_retry,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def normalize_change(entry: dict) -> ChangeEvent | None:
    """Turn one raw ``_changes`` row into a ChangeEvent, or None to skip it."""
    doc_id = entry.get("id")
    seq = parse_sequence(entry.get("seq"))
    if not doc_id or seq is None or is_internal_id(doc_id):
        return None
    return ChangeEvent(sequence_id=seq, package_name=doc_id, deleted=bool(entry.get("deleted")))


class ChangeFeedClient:
    """Polls the replication ``_changes`` endpoint from a sequence cursor.

    Events are yielded in upstream order. A page's events are all yielded
    before the cursor moves past it, so a failure can only cause redelivery,
    never loss. Transient failures back off exponentially; once the retry
    budget is spent the stream raises ChangeFeedExhaustedError.
    """

    def __init__(
        self,
        client: RegistryClient,
        retry_policy: RetryPolicy,
        page_size: int = 10_000,
        poll_interval: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.retry_policy = retry_policy
        self.page_size = page_size
        self.poll_interval = poll_interval
        self._sleep = sleep

    @classmethod
    def from_settings(cls, client: RegistryClient, settings) -> "ChangeFeedClient":
        return cls(
            client,
            RetryPolicy(
                max_retries=settings.changes_max_retries,
                base_delay=settings.changes_retry_base_delay,
                max_delay=settings.changes_retry_max_delay,
            ),
            page_size=settings.changes_page_size,
            poll_interval=settings.changes_poll_interval,
        )

    async def stream_changes(self, since: int) -> AsyncIterator[ChangeEvent]:
        cursor = since
        failures = 0

        while True:
            result = await self.client.fetch_changes(cursor, self.page_size)

            if isinstance(result, Fetched):
                failures = 0
                rows = result.value.get("results") or []
                for row in rows:
                    event = normalize_change(row)
                    if event is not None:
                        yield event

                last_seq = parse_sequence(result.value.get("last_seq"))
                if last_seq is not None and last_seq > cursor:
                    cursor = last_seq

                if len(rows) < self.page_size:
                    await self._sleep(self.poll_interval)
                continue

            failures += 1
            if isinstance(result, PermanentFailure) or not should_retry(
                result, failures, self.retry_policy
            ):
                logger.error("Change feed failed at seq %d: %s", cursor, result.reason)
                raise ChangeFeedExhaustedError(cursor, failures, result.reason)

            delay = self.retry_policy.delay_for(failures, result)
            logger.warning(
                "Change feed fetch failed (%s), retry %d/%d in %.1fs",
                result.reason, failures, self.retry_policy.max_retries, delay,
            )
            await self._sleep(delay)
