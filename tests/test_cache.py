"""Tests for the TTL cache store."""

import asyncio
from decimal import Decimal

from lending_cache.cache import keys
from lending_cache.cache.backends import MemoryBackend
from lending_cache.cache.store import MISS, CacheStore


def test_cache_stores_and_retrieves(store):
    assert asyncio.run(store.set("protocol:stats", {"data": "value"}, 60)) is True
    assert asyncio.run(store.get("protocol:stats")) == {"data": "value"}


def test_cache_returns_miss_for_missing_key(store):
    assert asyncio.run(store.get("missing")) is MISS


def test_miss_is_falsy_and_distinct_from_none(store):
    asyncio.run(store.set(keys.BRIDGE_STATUS, None, 60))
    assert not MISS
    assert MISS is not None
    assert asyncio.run(store.get(keys.BRIDGE_STATUS)) is None


def test_large_integer_strings_survive_round_trip(store):
    value = {"total_supply": "123456789012345678901234567890", "nested": [{"balance": "9" * 40}]}
    asyncio.run(store.set("protocol:stats", value, 60))
    assert asyncio.run(store.get("protocol:stats")) == value


def test_decimal_values_stored_as_strings(store):
    asyncio.run(store.set("rates:current", {"apy": Decimal("4.25")}, 60))
    assert asyncio.run(store.get("rates:current")) == {"apy": "4.25"}


def test_price_expires_after_ttl(store, clock):
    asyncio.run(store.set("price:stETH", {"price": "15000000000"}, 60))
    clock.advance(30)
    assert asyncio.run(store.get("price:stETH")) == {"price": "15000000000"}
    clock.advance(30)
    assert asyncio.run(store.get("price:stETH")) == {"price": "15000000000"}
    clock.advance(1)
    assert asyncio.run(store.get("price:stETH")) is MISS


def test_expired_entry_is_miss_even_if_backend_still_holds_it(clock):
    frozen_backend_clock = lambda: 0.0  # noqa: E731
    backend = MemoryBackend(clock=frozen_backend_clock)
    store = CacheStore(backend, clock=clock)
    asyncio.run(store.set("rates:current", {"XLM": "1"}, 10))
    clock.advance(11)
    assert len(backend) == 1
    assert asyncio.run(store.get("rates:current")) is MISS


def test_unencodable_value_is_rejected_and_prior_entry_kept(store):
    asyncio.run(store.set("markets:data", {"v": 1}, 60))
    assert asyncio.run(store.set("markets:data", {"v": {1, 2, 3}}, 60)) is False
    assert asyncio.run(store.set("markets:data", {"v": float("nan")}, 60)) is False
    assert asyncio.run(store.get("markets:data")) == {"v": 1}


def test_non_positive_ttl_rejected(store):
    assert asyncio.run(store.set("protocol:stats", {}, 0)) is False
    assert asyncio.run(store.get("protocol:stats")) is MISS


def test_default_ttl_applies(store, clock):
    asyncio.run(store.set("protocol:stats", {"a": 1}))
    clock.advance(300)
    assert asyncio.run(store.get("protocol:stats")) == {"a": 1}
    clock.advance(1)
    assert asyncio.run(store.get("protocol:stats")) is MISS


def test_delete(store):
    asyncio.run(store.set("price:XLM", {"price": "1"}, 60))
    assert asyncio.run(store.delete("price:XLM")) is True
    assert asyncio.run(store.delete("price:XLM")) is False
    assert asyncio.run(store.get("price:XLM")) is MISS


def test_exists_is_expiry_aware(store, clock):
    asyncio.run(store.set("price:XLM", {"price": "1"}, 5))
    assert asyncio.run(store.exists("price:XLM")) is True
    clock.advance(6)
    assert asyncio.run(store.exists("price:XLM")) is False


def test_clear_by_prefix(store):
    async def scenario() -> tuple[int, int, object, object]:
        for asset in ("stETH", "XLM", "USDC"):
            await store.set(f"price:{asset}", {"price": "1"}, 60)
        await store.set("prices:current", {}, 60)
        await store.set("protocol:stats", {}, 60)
        globbed = await store.clear_by_prefix("price:*")
        bare = await store.clear_by_prefix("protocol:")
        return globbed, bare, await store.get("prices:current"), await store.get("price:XLM")

    globbed, bare, prices, xlm = asyncio.run(scenario())
    assert globbed == 3
    assert bare == 1
    assert prices == {}
    assert xlm is MISS


def test_corrupt_entry_reads_as_miss(store):
    asyncio.run(store.backend.set("protocol:stats", "{not json", 60))
    assert asyncio.run(store.get("protocol:stats")) is MISS


def test_stats_count_hits_and_misses(store):
    async def scenario() -> dict[str, object]:
        await store.set("rates:current", {}, 60)
        await store.get("rates:current")
        await store.get("rates:missing")
        return await store.stats()

    stats = asyncio.run(scenario())
    assert stats == {"backend": "memory", "connected": True, "hits": 1, "misses": 1}


class TestDegradedBackend:
    def test_get_returns_miss(self, down_store):
        assert asyncio.run(down_store.get("protocol:stats")) is MISS

    def test_set_returns_false(self, down_store):
        assert asyncio.run(down_store.set("protocol:stats", {"a": 1}, 60)) is False

    def test_delete_and_exists_return_false(self, down_store):
        assert asyncio.run(down_store.delete("protocol:stats")) is False
        assert asyncio.run(down_store.exists("protocol:stats")) is False

    def test_clear_returns_zero(self, down_store):
        assert asyncio.run(down_store.clear_by_prefix("protocol:*")) == 0

    def test_stats_report_disconnected(self, down_store):
        stats = asyncio.run(down_store.stats())
        assert stats["connected"] is False
        assert stats["backend"] == "down"


def test_key_namespace_helpers():
    assert keys.asset_price("stETH") == "price:stETH"
    assert keys.user_position("GABC") == "user:position:GABC"
    assert keys.user_transactions("GABC") == "user:tx:GABC:1"
    assert keys.user_transactions("GABC", 3) == "user:tx:GABC:3"
    assert keys.as_pattern("rates:") == "rates:*"
    assert keys.as_pattern("user:tx:*") == "user:tx:*"


def test_clear_user_transactions_for_one_address(store):
    async def scenario() -> tuple[int, object]:
        for page in (1, 2):
            await store.set(keys.user_transactions("GABC", page), [], 60)
        await store.set(keys.user_transactions("GXYZ"), [], 60)
        removed = await store.clear_by_prefix("user:tx:GABC:")
        return removed, await store.get(keys.user_transactions("GXYZ"))

    removed, other = asyncio.run(scenario())
    assert removed == 2
    assert other == []
