"""
Key-value cache used by the complexity triage.

Key Components:
- KeyValueCache: Protocol every backend implements (get / put with TTL)
- MemoryKVCache: in-process cache with per-entry expiry (cachetools)
- RedisKVCache: shared cache for multi-instance deployments (redis.asyncio)

The cache is a pure optimisation: callers treat any backend failure as a
miss and carry on.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, NamedTuple, Protocol

import redis.asyncio as redis
from cachetools import TLRUCache

logger = logging.getLogger(__name__)


class KeyValueCache(Protocol):
    async def get(self, key: str) -> str | None: ...
    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...
    async def close(self) -> None: ...

# ---------- in-memory implementation ----------

class _Entry(NamedTuple):
    value: str
    ttl_seconds: int


def _expires_at(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl_seconds


class MemoryKVCache(KeyValueCache):
    """
    Process-local cache; entries expire individually and the least recently
    used entry is evicted once `maxsize` is reached.
    """
    def __init__(
        self, maxsize: int = 10_000, timer: Callable[[], float] = time.monotonic
    ):
        self._cache: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=maxsize, ttu=_expires_at, timer=timer
        )

    async def get(self, key: str) -> str | None:
        entry = self._cache.get(key)
        return entry.value if entry is not None else None

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._cache[key] = _Entry(value, ttl_seconds)

    async def close(self) -> None:
        self._cache.clear()

# ---------- Redis implementation ----------

class RedisKVCache(KeyValueCache):
    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        if client is None:
            if not url:
                raise ValueError("RedisKVCache needs a url or a client")
            client = redis.from_url(url, decode_responses=True)
        self._redis = client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(key, ttl_seconds, value)

    async def close(self) -> None:
        await self._redis.aclose()


def create_cache(cache_config: dict[str, Any]) -> KeyValueCache:
    """Build the configured backend (`memory` unless `backend: redis`)."""
    backend = (cache_config.get("backend") or "memory").lower()
    if backend == "redis":
        logger.info("Using Redis key-value cache")
        return RedisKVCache(url=cache_config.get("redis_url"))
    if backend != "memory":
        raise ValueError(f"Unknown cache backend: {backend}")
    return MemoryKVCache(maxsize=int(cache_config.get("maxsize", 10_000)))
