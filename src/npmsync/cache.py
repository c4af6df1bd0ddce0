"""Key-value cache with TTL: Redis in production, in-process LRU locally.

Cache failures never propagate; a failed read is a miss and a failed write
is dropped with a warning.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)


class Cache(ABC):
    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...


class RedisCache(Cache):
    """JSON values under a key prefix in Redis."""

    def __init__(self, redis, prefix: str = "npmsync:cache:"):
        self.redis = redis
        self.prefix = prefix

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(self.prefix + key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.redis.set(self.prefix + key, json.dumps(value), ex=ttl)
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(self.prefix + key)
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)


class MemoryCache(Cache):
    """Bounded LRU with per-entry expiry. Cleared on restart."""

    def __init__(self, max_size: int = 10_000):
        self.max_size = max_size
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() > expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (value, time.monotonic() + ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class CacheKey:
    """Key patterns shared by writers and readers."""

    @staticmethod
    def downloads(name: str) -> str:
        return f"downloads:{name}"

    @staticmethod
    def advisories(name: str, version: str) -> str:
        return f"vuln:{name}:{version}"

    @staticmethod
    def install_size(name: str, version: str) -> str:
        return f"install-size:{name}@{version}"

    @staticmethod
    def latest_version(name: str) -> str:
        return f"sync:version:{name}"

    @staticmethod
    def document_hash(name: str) -> str:
        return f"sync:hash:{name}"
