"""TTL cache store.

Every value is JSON-encoded inside an envelope that records when it was
written and for how long it stays valid. Reads check that envelope against
the store's clock, so an entry counts as expired as soon as its TTL has
elapsed, whether or not the backend has evicted it yet.

All operations fail soft: backend outages and encoding errors are logged and
reported as a miss, ``False`` or ``0``, never raised.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from lending_cache.cache.backends import CacheBackend, MemoryBackend
from lending_cache.cache.keys import as_pattern
from lending_cache.errors import CacheBackendUnavailable, SerializationFailure
from lending_cache.monitoring.logging import log_cache_operation

logger = logging.getLogger(__name__)


class _Miss:
    """Sentinel returned by :meth:`CacheStore.get` for absent or expired keys."""

    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass(frozen=True)
class CacheEntry:
    """A stored value together with its write time and validity window."""

    key: str
    value: Any
    stored_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl_seconds

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


def _json_default(obj: object) -> str:
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_entry(entry: CacheEntry) -> str:
    """Encode an entry envelope, raising :class:`SerializationFailure` on bad values."""
    try:
        return json.dumps(
            {"value": entry.value, "stored_at": entry.stored_at, "ttl": entry.ttl_seconds},
            default=_json_default,
            allow_nan=False,
        )
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationFailure(f"cannot encode value for {entry.key}: {exc}") from exc


def decode_entry(key: str, raw: str) -> CacheEntry:
    """Decode an envelope written by :func:`encode_entry`."""
    try:
        data = json.loads(raw)
        return CacheEntry(key=key, value=data["value"], stored_at=float(data["stored_at"]), ttl_seconds=float(data["ttl"]))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise SerializationFailure(f"corrupt cache entry for {key}: {exc}") from exc


class CacheStore:
    """Key/value store with per-key TTL over a pluggable backend."""

    def __init__(
        self,
        backend: CacheBackend | None = None,
        *,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend: CacheBackend = backend if backend is not None else MemoryBackend(clock=clock)
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Return the cached value, or :data:`MISS` if absent, expired or unreadable."""
        entry = await self.get_entry(key)
        if entry is None:
            return MISS
        return entry.value

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Return the full fresh entry for ``key`` or ``None``."""
        start = time.perf_counter()
        try:
            raw = await self._backend.get(key)
        except CacheBackendUnavailable as exc:
            logger.warning("Cache get for %s degraded to miss: %s", key, exc)
            self._misses += 1
            return None

        entry: CacheEntry | None = None
        if raw is not None:
            try:
                entry = decode_entry(key, raw)
            except SerializationFailure as exc:
                logger.warning("%s", exc)
            else:
                if entry.is_expired(self._clock()):
                    entry = None

        if entry is None:
            self._misses += 1
        else:
            self._hits += 1
        log_cache_operation("get", key, hit=entry is not None, duration_ms=_elapsed_ms(start))
        return entry

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store ``value`` under ``key``.

        Returns ``False`` and leaves any previous entry in place when the
        value cannot be encoded or the backend is unreachable.
        """
        ttl_seconds = ttl if ttl is not None else self._default_ttl
        if ttl_seconds <= 0:
            logger.warning("Refusing to cache %s with non-positive TTL %s", key, ttl_seconds)
            return False

        start = time.perf_counter()
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl_seconds=ttl_seconds)
        try:
            raw = encode_entry(entry)
        except SerializationFailure as exc:
            logger.error("%s", exc)
            return False
        try:
            await self._backend.set(key, raw, ttl_seconds)
        except CacheBackendUnavailable as exc:
            logger.warning("Cache set for %s dropped: %s", key, exc)
            return False
        log_cache_operation("set", key, duration_ms=_elapsed_ms(start))
        return True

    async def delete(self, key: str) -> bool:
        start = time.perf_counter()
        try:
            removed = await self._backend.delete(key)
        except CacheBackendUnavailable as exc:
            logger.warning("Cache delete for %s failed: %s", key, exc)
            return False
        log_cache_operation("delete", key, hit=removed, duration_ms=_elapsed_ms(start))
        return removed

    async def exists(self, key: str) -> bool:
        """Expiry-aware existence check."""
        return await self.get_entry(key) is not None

    async def clear_by_prefix(self, pattern: str) -> int:
        """Remove every key matching a namespace prefix or glob; return how many."""
        glob = as_pattern(pattern)
        try:
            removed = await self._backend.delete_matching(glob)
        except CacheBackendUnavailable as exc:
            logger.warning("Cache clear for %s failed: %s", glob, exc)
            return 0
        if removed:
            logger.info("Cleared %d cache keys matching pattern: %s", removed, glob)
        return removed

    async def stats(self) -> dict[str, Any]:
        connected = await self._backend.ping()
        return {
            "backend": self._backend.kind,
            "connected": connected,
            "hits": self._hits,
            "misses": self._misses,
        }

    async def close(self) -> None:
        await self._backend.close()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0
