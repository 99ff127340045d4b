"""TTL cache store and its backends."""

from lending_cache.cache.store import MISS, CacheStore

__all__ = ["MISS", "CacheStore"]
