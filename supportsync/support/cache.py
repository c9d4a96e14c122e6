"""Read-cache backends the sync engine invalidates after each commit.

The engine only needs two capabilities, ``delete`` and ``flush_by_prefix``,
described by :class:`CacheBackend`. :class:`InMemoryCache` serves a single
process; :class:`RedisCache` shares invalidations across workers.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Minimal invalidation interface consumed by the sync engine."""

    def delete(self, key: str) -> None: ...

    def flush_by_prefix(self, prefix: str) -> int: ...


class InMemoryCache:
    """Thread-safe dictionary cache."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._items.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def flush_by_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._items if key.startswith(prefix)]
            for key in doomed:
                del self._items[key]
        return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._items)


class RedisCache:
    """Redis-backed cache; prefix flushes use ``SCAN`` so Redis is never blocked."""

    def __init__(self, url: str, *, client: "redis.Redis | None" = None) -> None:
        self.url = url
        self._client = client

    @property
    def client(self) -> "redis.Redis":
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def flush_by_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[str] = []
        for key in self.client.scan_iter(match=f"{prefix}*", count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += self.client.delete(*batch)
                batch.clear()
        if batch:
            removed += self.client.delete(*batch)
        return removed


def build_cache(url: str | None) -> CacheBackend:
    """Return a Redis cache for ``redis://`` URLs, otherwise an in-memory one."""

    if url and url.startswith(("redis://", "rediss://", "unix://")):
        logger.info("Using Redis cache backend for support sync invalidations")
        return RedisCache(url)
    return InMemoryCache()


__all__ = ["CacheBackend", "InMemoryCache", "RedisCache", "build_cache"]
