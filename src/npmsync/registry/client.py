"""HTTP client for the npm registry, its replication feed and download counts."""

import json
import logging
from datetime import date, timedelta
from urllib.parse import quote

import httpx

from npmsync.registry.results import (
    Fetched,
    FetchResult,
    TransientFailure,
    classify_response,
)

logger = logging.getLogger(__name__)

# Required by the replication endpoints since the 2025 migration
_REPLICATE_HEADERS = {"npm-replication-opt-in": "true"}


def encode_package_name(name: str) -> str:
    """URL-encode a package name, keeping the scope's leading ``@``."""
    if name.startswith("@"):
        return "@" + quote(name[1:], safe="")
    return quote(name, safe="")


def is_internal_id(doc_id: str) -> bool:
    """CouchDB design documents are registry internals, not packages."""
    return doc_id.startswith("_design/")


class RegistryClient:
    """Thin async wrapper over the registry endpoints.

    Every method returns a FetchResult; none of them raise for HTTP or
    transport failures.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        registry_url: str,
        replicate_url: str,
        downloads_url: str,
    ):
        self.http = http
        self.registry_url = registry_url.rstrip("/")
        self.replicate_url = replicate_url.rstrip("/")
        self.downloads_url = downloads_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings, transport: httpx.AsyncBaseTransport | None = None) -> "RegistryClient":
        http = httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
            transport=transport,
        )
        return cls(http, settings.registry_url, settings.replicate_url, settings.downloads_api_url)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get(self, url: str, **kwargs) -> FetchResult:
        try:
            response = await self.http.get(url, **kwargs)
        except httpx.TransportError as exc:
            return TransientFailure(f"{type(exc).__name__}: {exc}")
        return classify_response(response)

    async def fetch_packument(self, name: str) -> FetchResult:
        """Full metadata document for ``name``; 404 is a permanent failure."""
        return await self._get(f"{self.registry_url}/{encode_package_name(name)}")

    async def fetch_changes(self, since: int, limit: int) -> FetchResult:
        return await self._get(
            f"{self.replicate_url}/_changes",
            params={"since": since, "limit": limit},
            headers=_REPLICATE_HEADERS,
        )

    async def fetch_update_seq(self) -> FetchResult:
        """Current head of the change log."""
        result = await self._get(f"{self.replicate_url}/", headers=_REPLICATE_HEADERS)
        if isinstance(result, Fetched):
            seq = parse_sequence(result.value.get("update_seq"))
            if seq is None:
                return TransientFailure("registry info has no update_seq")
            return Fetched(seq)
        return result

    async def fetch_listing_page(self, start_key: str | None, limit: int) -> FetchResult:
        """One keyset page of ``_all_docs`` starting at (and including) ``start_key``."""
        params: dict = {"limit": limit}
        if start_key:
            params["startkey"] = json.dumps(start_key)
        return await self._get(
            f"{self.replicate_url}/_all_docs", params=params, headers=_REPLICATE_HEADERS
        )

    async def fetch_weekly_downloads(self, name: str, today: date | None = None) -> FetchResult:
        """Downloads over the seven full days ending yesterday."""
        today = today or date.today()
        start = (today - timedelta(days=7)).isoformat()
        end = (today - timedelta(days=1)).isoformat()
        result = await self._get(
            f"{self.downloads_url}/point/{start}:{end}/{encode_package_name(name)}"
        )
        if isinstance(result, Fetched):
            return Fetched(int(result.value.get("downloads") or 0))
        return result


def parse_sequence(raw) -> int | None:
    """Sequence ids are integers, or ``"<int>-<opaque>"`` strings on CouchDB 2+."""
    if raw is None:
        return None
    if isinstance(raw, int):
        return raw
    head = str(raw).split("-", 1)[0]
    try:
        return int(head)
    except ValueError:
        return None
