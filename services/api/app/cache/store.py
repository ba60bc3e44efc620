"""
Cache store backends.

The coordinator only needs get / set-with-TTL / delete. A missing key is
None, never an error. Connectivity failures raise StoreUnavailable so the
coordinator can fall through to the source.

  RedisCacheStore   — production backend (redis.asyncio)
  MemoryCacheStore  — single-process backend for local runs and tests;
                      expiry is driven by an injectable clock
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...


class RedisCacheStore:
    def __init__(self, client: aioredis.Redis):
        self._redis = client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            raise StoreUnavailable(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise StoreUnavailable(f"SET {key} failed: {exc}") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._redis.delete(*keys)
        except RedisError as exc:
            raise StoreUnavailable(f"DEL {' '.join(keys)} failed: {exc}") from exc


@dataclass
class _Entry:
    value: str
    expires_at: float


class MemoryCacheStore:
    """In-process store with per-entry expiry. Not shared across workers."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._cleanup_expired()
        self._entries[key] = _Entry(value, self._clock() + ttl_seconds)

    def _cleanup_expired(self) -> None:
        """Drop expired entries, including keys that are never read again."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)
