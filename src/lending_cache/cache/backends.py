"""Storage backends for :class:`~lending_cache.cache.store.CacheStore`.

A backend stores opaque strings with a physical expiry. It raises
:class:`CacheBackendUnavailable` when it cannot be reached; the store turns
that into soft failures.
"""

from __future__ import annotations

import fnmatch
import math
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from lending_cache.errors import CacheBackendUnavailable


class CacheBackend(Protocol):
    """Structural protocol for cache storage backends."""

    kind: str

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, data: str, ttl: float) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_matching(self, pattern: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class MemoryBackend:
    """In-process dict with per-key expiration."""

    kind = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._store: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        data, expires_at = entry
        if self._clock() > expires_at:
            del self._store[key]
            return None
        return data

    async def set(self, key: str, data: str, ttl: float) -> None:
        self._store[key] = (data, self._clock() + ttl)

    async def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    async def delete_matching(self, pattern: str) -> int:
        matched = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
        for key in matched:
            del self._store[key]
        return len(matched)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class RedisBackend:
    """Redis-backed storage using ``SETEX`` and ``SCAN MATCH``."""

    kind = "redis"

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        *,
        connect_timeout: float = 5.0,
        client: redis.Redis | None = None,
    ) -> None:
        self._url = url
        self._client = (
            client
            if client is not None
            else redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=connect_timeout,
                socket_timeout=connect_timeout,
            )
        )

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheBackendUnavailable(f"redis GET {key} failed: {exc}") from exc

    async def set(self, key: str, data: str, ttl: float) -> None:
        # SETEX only takes whole seconds.
        seconds = max(1, math.ceil(ttl))
        try:
            await self._client.setex(key, seconds, data)
        except (RedisError, OSError) as exc:
            raise CacheBackendUnavailable(f"redis SETEX {key} failed: {exc}") from exc

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except (RedisError, OSError) as exc:
            raise CacheBackendUnavailable(f"redis DEL {key} failed: {exc}") from exc

    async def delete_matching(self, pattern: str) -> int:
        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if not keys:
                return 0
            return int(await self._client.delete(*keys))
        except (RedisError, OSError) as exc:
            raise CacheBackendUnavailable(f"redis clear {pattern} failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()
