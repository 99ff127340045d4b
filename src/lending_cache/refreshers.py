"""Refreshers: units of work that recompute one cached dataset.

A refresher computes a mapping of cache keys to payloads and writes all of
them with the TTL its job supplies. A failed computation leaves the cache
untouched. Refreshers never retry; the next scheduled tick does.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from lending_cache.cache import keys
from lending_cache.cache.store import CacheStore
from lending_cache.errors import UpstreamError, UpstreamRejected
from lending_cache.upstream.client import UpstreamClient
from lending_cache.upstream.models import utc_now_iso

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Awaitable[dict[str, Any]]]


@dataclass
class RefreshOutcome:
    name: str
    ok: bool
    error: str | None = None
    keys_written: list[str] = field(default_factory=list)


@dataclass
class Refresher:
    """Named dataset computation bound to the keys it writes."""

    name: str
    compute: ComputeFn

    async def run(self, store: CacheStore, ttl: float) -> RefreshOutcome:
        try:
            writes = await self.compute()
        except UpstreamRejected as exc:
            logger.error("Refresh %s rejected by upstream: %s", self.name, exc)
            return RefreshOutcome(self.name, ok=False, error=str(exc))
        except UpstreamError as exc:
            logger.warning("Refresh %s failed, keeping cached data: %s", self.name, exc)
            return RefreshOutcome(self.name, ok=False, error=str(exc))
        except Exception as exc:
            logger.exception("Refresh %s raised unexpectedly", self.name)
            return RefreshOutcome(self.name, ok=False, error=f"{type(exc).__name__}: {exc}")

        written: list[str] = []
        failed: list[str] = []
        for key, value in writes.items():
            if await store.set(key, value, ttl):
                written.append(key)
            else:
                failed.append(key)
        if failed:
            msg = f"cache write failed for {', '.join(failed)}"
            logger.warning("Refresh %s: %s", self.name, msg)
            return RefreshOutcome(self.name, ok=False, error=msg, keys_written=written)
        logger.debug("Refresh %s wrote %s", self.name, ", ".join(written))
        return RefreshOutcome(self.name, ok=True, keys_written=written)


# ----------------------------------------------------------------------
# Dataset computations
# ----------------------------------------------------------------------


def protocol_stats_refresher(client: UpstreamClient) -> Refresher:
    async def compute() -> dict[str, Any]:
        stats = await client.get_protocol_stats()
        return {keys.PROTOCOL_STATS: stats.model_dump()}

    return Refresher("protocol_stats", compute)


def interest_rates_refresher(client: UpstreamClient) -> Refresher:
    async def compute() -> dict[str, Any]:
        rates = await client.get_interest_rates()
        return {keys.INTEREST_RATES: rates.model_dump()}

    return Refresher("interest_rates", compute)


def asset_prices_refresher(client: UpstreamClient) -> Refresher:
    """Write the full price table plus one ``price:<asset>`` key per known price.

    Assets whose reading is ``unknown`` get no per-asset write, so their last
    good price stays cached until its own TTL runs out.
    """

    async def compute() -> dict[str, Any]:
        prices = await client.get_asset_prices()
        payload = prices.model_dump()
        writes: dict[str, Any] = {keys.ASSET_PRICES: payload}
        for asset, reading in prices.prices.items():
            if reading.status == "ok":
                writes[keys.asset_price(asset)] = {
                    "asset": asset,
                    "price": reading.price,
                    "timestamp": prices.timestamp,
                }
        return writes

    return Refresher("asset_prices", compute)


def market_snapshot_refresher(client: UpstreamClient) -> Refresher:
    """Composite of stats, rates and prices fetched concurrently.

    A failed sub-call is recorded as an ``unavailable`` slot. The snapshot
    itself fails only when every sub-call fails.
    """

    async def compute() -> dict[str, Any]:
        results = await asyncio.gather(
            client.get_protocol_stats(),
            client.get_interest_rates(),
            client.get_asset_prices(),
            return_exceptions=True,
        )
        snapshot: dict[str, Any] = {}
        errors: list[BaseException] = []
        for name, result in zip(("stats", "rates", "prices"), results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Market snapshot: %s unavailable: %s", name, result)
                snapshot[name] = {"status": "unavailable", "error": str(result)}
                errors.append(result)
            else:
                snapshot[name] = result.model_dump()
        if len(errors) == len(results):
            first = errors[0]
            raise first if isinstance(first, UpstreamError) else UpstreamError(str(first))
        snapshot["timestamp"] = utc_now_iso()
        return {keys.MARKET_DATA: snapshot}

    return Refresher("market_snapshot", compute)


def system_health_refresher(client: UpstreamClient) -> Refresher:
    async def compute() -> dict[str, Any]:
        health = await client.health_check()
        if not health.healthy:
            logger.warning("Ledger health check reports unhealthy: rpc=%s network=%s", health.rpc.status, health.network.status)
        return {keys.SYSTEM_HEALTH: health.model_dump()}

    return Refresher("system_health", compute)


REFRESHER_FACTORIES: dict[str, Callable[[UpstreamClient], Refresher]] = {
    "protocol_stats": protocol_stats_refresher,
    "interest_rates": interest_rates_refresher,
    "asset_prices": asset_prices_refresher,
    "market_snapshot": market_snapshot_refresher,
    "system_health": system_health_refresher,
}
