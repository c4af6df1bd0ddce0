"""Full registry listing for cold-start backfills."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from npmsync.errors.exceptions import ListingFetchError
from npmsync.models.registry import ListingPage
from npmsync.registry.client import RegistryClient, is_internal_id
from npmsync.registry.results import Fetched

logger = logging.getLogger(__name__)

BatchCallback = Callable[[list[str], int, int], Awaitable[None]]


class PackageLister:
    """Walks ``_all_docs`` with keyset pagination.

    Each request starts at the last key of the previous page, so that key
    comes back first and is dropped. Listing ends with the first short page.
    Any failed page aborts the listing.
    """

    def __init__(self, client: RegistryClient, page_size: int = 10_000):
        self.client = client
        self.page_size = page_size

    async def iter_pages(
        self,
        start_key: str | None = None,
        already_listed: int = 0,
    ) -> AsyncIterator[ListingPage]:
        """Yield listing pages, optionally resuming after ``start_key``."""
        key = start_key
        count = already_listed
        estimated_total = 0
        page_number = 0

        while True:
            page_number += 1
            result = await self.client.fetch_listing_page(key, self.page_size)
            if not isinstance(result, Fetched):
                raise ListingFetchError(key, result.reason)

            data = result.value
            if page_number == 1:
                estimated_total = int(data.get("total_rows") or 0)
                logger.info("Registry reports %d documents", estimated_total)

            rows = data.get("rows") or []
            ids = [row["id"] for row in rows if row.get("id")]
            names = [doc_id for doc_id in ids if not is_internal_id(doc_id)]
            if key and names and names[0] == key:
                names = names[1:]

            count += len(names)
            last_key = ids[-1] if ids else key
            yield ListingPage(
                names=names,
                cumulative_count=count,
                estimated_total=estimated_total,
                last_key=last_key,
            )

            if page_number % 10 == 0:
                logger.info("Listed %d packages so far", count)

            if len(rows) < self.page_size or not ids:
                break
            key = last_key

        logger.info("Listing finished: %d packages", count)

    async def list_all_packages(self, on_batch: BatchCallback | None = None) -> list[str]:
        """Collect every package name, calling ``on_batch`` as each page lands."""
        packages: list[str] = []
        async for page in self.iter_pages():
            packages.extend(page.names)
            if on_batch and page.names:
                await on_batch(page.names, page.cumulative_count, page.estimated_total)
        return packages
