"""Shared fakes for cache, upstream and scheduler tests."""

from collections import Counter

import pytest

from lending_cache.cache.backends import MemoryBackend
from lending_cache.cache.store import CacheStore
from lending_cache.errors import CacheBackendUnavailable, UpstreamRejected, UpstreamUnavailable
from lending_cache.upstream.models import (
    AssetPrices,
    ComponentHealth,
    HealthStatus,
    InterestRates,
    PoolRates,
    PriceReading,
    ProtocolStats,
)


class FakeClock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """In-memory stand-in for :class:`LedgerClient`.

    Names in ``fail`` make the matching dataset raise ``UpstreamUnavailable``;
    names in ``reject`` raise ``UpstreamRejected``.
    """

    def __init__(self) -> None:
        self.fail: set[str] = set()
        self.reject: set[str] = set()
        self.calls: Counter[str] = Counter()
        self.prices: dict[str, str | None] = {"stETH": "15000000000", "XLM": "1200000", "USDC": "10000000"}
        self.total_supply = "123456789012345678901234567890"
        self.closed = False

    def _check(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.fail:
            raise UpstreamUnavailable(f"{name} timed out", method=name)
        if name in self.reject:
            raise UpstreamRejected(f"{name} invalid params", method=name, code=-32602)

    async def get_protocol_stats(self) -> ProtocolStats:
        self._check("protocol_stats")
        return ProtocolStats.from_rpc(self.total_supply, ["5000", "2000", "4000"], "10000000")

    async def get_interest_rates(self) -> InterestRates:
        self._check("interest_rates")
        return InterestRates(rates={"XLM": PoolRates.from_pool_info(["5000", "2000", "4000"])})

    async def get_asset_prices(self) -> AssetPrices:
        self._check("asset_prices")
        return AssetPrices(
            prices={
                asset: PriceReading(price=price) if price is not None else PriceReading.unknown()
                for asset, price in self.prices.items()
            }
        )

    async def health_check(self) -> HealthStatus:
        self._check("health")
        return HealthStatus(
            healthy=True,
            duration_ms=1.0,
            rpc=ComponentHealth(status="ok"),
            network=ComponentHealth(status="ok"),
        )

    async def aclose(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "FakeUpstream":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


class DownBackend:
    """Backend whose every operation fails as if the server were unreachable."""

    kind = "down"

    async def get(self, key: str) -> str | None:
        raise CacheBackendUnavailable("connection refused")

    async def set(self, key: str, data: str, ttl: float) -> None:
        raise CacheBackendUnavailable("connection refused")

    async def delete(self, key: str) -> bool:
        raise CacheBackendUnavailable("connection refused")

    async def delete_matching(self, pattern: str) -> int:
        raise CacheBackendUnavailable("connection refused")

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(1_700_000_000.0)


@pytest.fixture()
def store(clock: FakeClock) -> CacheStore:
    return CacheStore(MemoryBackend(clock=clock), default_ttl=300, clock=clock)


@pytest.fixture()
def down_store() -> CacheStore:
    return CacheStore(DownBackend())


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()
