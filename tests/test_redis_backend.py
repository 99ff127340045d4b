"""Tests for the Redis cache backend against a mocked client."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from lending_cache.cache.backends import RedisBackend
from lending_cache.cache.store import MISS, CacheStore
from lending_cache.errors import CacheBackendUnavailable


async def _scan(keys: list[str]):
    for key in keys:
        yield key


@pytest.fixture()
def client(mocker):
    return mocker.AsyncMock()


def test_set_uses_setex_with_whole_seconds(client):
    backend = RedisBackend(client=client)
    asyncio.run(backend.set("price:XLM", "{}", 59.2))
    client.setex.assert_awaited_once_with("price:XLM", 60, "{}")


def test_get_passes_through(client):
    client.get.return_value = '{"value": 1}'
    backend = RedisBackend(client=client)
    assert asyncio.run(backend.get("price:XLM")) == '{"value": 1}'


def test_connection_error_maps_to_backend_unavailable(client):
    client.get.side_effect = RedisConnectionError("connection refused")
    backend = RedisBackend(client=client)
    with pytest.raises(CacheBackendUnavailable):
        asyncio.run(backend.get("price:XLM"))


def test_store_over_unreachable_redis_fails_soft(client):
    client.get.side_effect = RedisConnectionError("connection refused")
    client.setex.side_effect = RedisConnectionError("connection refused")
    store = CacheStore(RedisBackend(client=client))
    assert asyncio.run(store.get("protocol:stats")) is MISS
    assert asyncio.run(store.set("protocol:stats", {"a": 1}, 60)) is False


def test_delete_matching_scans_then_deletes(client):
    client.scan_iter = lambda match: _scan(["price:XLM", "price:USDC"])
    client.delete.return_value = 2
    backend = RedisBackend(client=client)
    assert asyncio.run(backend.delete_matching("price:*")) == 2
    client.delete.assert_awaited_once_with("price:XLM", "price:USDC")


def test_delete_matching_without_keys_skips_delete(client):
    client.scan_iter = lambda match: _scan([])
    backend = RedisBackend(client=client)
    assert asyncio.run(backend.delete_matching("user:*")) == 0
    client.delete.assert_not_awaited()


def test_ping_failure_reports_false(client):
    client.ping.side_effect = RedisConnectionError("down")
    backend = RedisBackend(client=client)
    assert asyncio.run(backend.ping()) is False
