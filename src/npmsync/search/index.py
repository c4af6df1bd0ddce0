"""Typesense document store used as the package search index."""

import logging
from abc import ABC, abstractmethod

import httpx

from npmsync.errors.exceptions import SearchIndexError
from npmsync.registry.client import encode_package_name

logger = logging.getLogger(__name__)


class SearchIndex(ABC):
    """Upsert and delete by package name."""

    @abstractmethod
    async def upsert(self, document: dict) -> None: ...

    @abstractmethod
    async def delete(self, package_name: str) -> None: ...


class TypesenseIndex(SearchIndex):
    def __init__(self, http: httpx.AsyncClient, base_url: str, api_key: str, collection: str = "packages"):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.collection = collection

    @property
    def _documents_url(self) -> str:
        return f"{self.base_url}/collections/{self.collection}/documents"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(
                method, url, headers={"X-TYPESENSE-API-KEY": self.api_key}, **kwargs
            )
        except httpx.TransportError as exc:
            raise SearchIndexError(f"Typesense unreachable: {exc}") from exc

    async def upsert(self, document: dict) -> None:
        response = await self._request(
            "POST", self._documents_url, params={"action": "upsert"}, json=document
        )
        if response.status_code >= 400:
            raise SearchIndexError(
                f"Typesense upsert of {document.get('id')} returned {response.status_code}",
                transient=response.status_code == 429 or response.status_code >= 500,
            )

    async def delete(self, package_name: str) -> None:
        response = await self._request(
            "DELETE", f"{self._documents_url}/{encode_package_name(package_name)}"
        )
        if response.status_code == 404:
            logger.debug("Index had no document for %s", package_name)
            return
        if response.status_code >= 400:
            raise SearchIndexError(
                f"Typesense delete of {package_name} returned {response.status_code}",
                transient=response.status_code == 429 or response.status_code >= 500,
            )


class InMemoryIndex(SearchIndex):
    """Dict-backed index for local mode and tests."""

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.upserts = 0

    async def upsert(self, document: dict) -> None:
        self.upserts += 1
        self.documents[document["id"]] = document

    async def delete(self, package_name: str) -> None:
        self.documents.pop(package_name, None)
