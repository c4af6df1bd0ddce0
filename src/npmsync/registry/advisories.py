"""Security advisory lookups against the OSV database."""

import logging

import httpx

from npmsync.cache import Cache, CacheKey
from npmsync.registry.results import Fetched, FetchResult, TransientFailure, classify_response

logger = logging.getLogger(__name__)


class AdvisoryClient:
    """Known vulnerability ids for one npm package version, cached per version."""

    def __init__(self, http: httpx.AsyncClient, base_url: str, cache: Cache, ttl: int):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.ttl = ttl

    async def vulnerability_ids(self, name: str, version: str) -> FetchResult:
        key = CacheKey.advisories(name, version)
        cached = await self.cache.get(key)
        if cached is not None:
            return Fetched(cached)

        try:
            response = await self.http.post(
                f"{self.base_url}/query",
                json={"package": {"name": name, "ecosystem": "npm"}, "version": version},
            )
        except httpx.TransportError as exc:
            return TransientFailure(f"{type(exc).__name__}: {exc}")

        result = classify_response(response)
        if isinstance(result, Fetched):
            ids = sorted(v["id"] for v in result.value.get("vulns") or [] if v.get("id"))
            await self.cache.set(key, ids, self.ttl)
            return Fetched(ids)
        return result
