"""Ledger client.

Talks JSON-RPC 2.0 to a node gateway that exposes read-only contract views,
and turns the raw results into normalized dataset models. All integers in a
result are converted to decimal strings before they leave this module.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from decimal import Decimal
from typing import Any, Protocol

import httpx

from lending_cache.errors import UpstreamError, UpstreamRejected, UpstreamUnavailable
from lending_cache.monitoring.logging import log_upstream_call
from lending_cache.upstream.external import ExternalPriceSource
from lending_cache.upstream.models import (
    AssetPrices,
    ComponentHealth,
    HealthStatus,
    InterestRates,
    PoolRates,
    PriceReading,
    ProtocolStats,
    to_int,
)

logger = logging.getLogger(__name__)

CONTRACT_CALL_METHOD = "contract_call"
DEFAULT_ASSETS = ("stETH", "XLM", "USDC")


class UpstreamClient(Protocol):
    """Datasets the refreshers pull from the ledger."""

    async def get_protocol_stats(self) -> ProtocolStats: ...

    async def get_interest_rates(self) -> InterestRates: ...

    async def get_asset_prices(self) -> AssetPrices: ...

    async def health_check(self) -> HealthStatus: ...


def normalize(value: Any) -> Any:
    """Recursively convert numbers to decimal strings."""
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(Decimal(repr(value)))
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


class LedgerClient:
    """Async JSON-RPC client for the lending pool, s-token and price oracle contracts."""

    def __init__(
        self,
        rpc_url: str,
        *,
        contracts: dict[str, str | None] | None = None,
        assets: tuple[str, ...] | list[str] = DEFAULT_ASSETS,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        price_fallback: ExternalPriceSource | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._contracts: dict[str, str | None] = {"lending_pool": None, "s_token": None, "price_oracle": None}
        self._contracts.update(contracts or {})
        self._assets = tuple(assets)
        self._timeout = timeout
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)
        self._price_fallback = price_fallback

    async def __aenter__(self) -> LedgerClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def assets(self) -> tuple[str, ...]:
        return self._assets

    # ------------------------------------------------------------------
    # Raw calls
    # ------------------------------------------------------------------

    async def rpc(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one JSON-RPC request and return its normalized ``result``."""
        return normalize(await self._post(method, params or {}, action=method))

    async def call(self, endpoint_id: str | None, method: str, params: list[Any] | None = None) -> Any:
        """Invoke a read-only contract function and return its normalized result."""
        if not endpoint_id:
            raise UpstreamRejected(f"no contract configured for {method}", method=method)
        payload = {"contract": endpoint_id, "function": method, "args": list(params or [])}
        result = await self._post(CONTRACT_CALL_METHOD, payload, action=f"{method}@{endpoint_id}")
        return normalize(result)

    async def _post(self, method: str, params: dict[str, Any], *, action: str) -> Any:
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._send(request, method), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            err = UpstreamUnavailable(f"{action} timed out after {self._timeout}s", method=method)
            log_upstream_call(action, duration_ms=_elapsed_ms(start), error=str(err))
            raise err from exc
        except UpstreamError as exc:
            log_upstream_call(action, duration_ms=_elapsed_ms(start), error=str(exc))
            raise
        log_upstream_call(action, duration_ms=_elapsed_ms(start))
        return result

    async def _send(self, request: dict[str, Any], method: str) -> Any:
        try:
            response = await self._http.post(self._rpc_url, json=request)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(f"{method} timed out: {exc}", method=method) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"{method} transport error: {exc}", method=method) from exc

        if response.status_code >= 500:
            raise UpstreamUnavailable(f"{method} failed with HTTP {response.status_code}", method=method)
        if response.status_code >= 400:
            raise UpstreamRejected(
                f"{method} rejected with HTTP {response.status_code}", method=method, code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"{method} returned an undecodable body", method=method) from exc
        if not isinstance(body, dict):
            raise UpstreamUnavailable(f"{method} returned a non-object body", method=method)

        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise UpstreamRejected(str(error.get("message", error)), method=method, code=error.get("code"))
            raise UpstreamRejected(str(error), method=method)
        if "result" not in body:
            raise UpstreamUnavailable(f"{method} reply carried neither result nor error", method=method)
        return body["result"]

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    async def get_protocol_stats(self) -> ProtocolStats:
        total_supply, pool_info, exchange_rate = await asyncio.gather(
            self.call(self._contracts["s_token"], "total_supply"),
            self.call(self._contracts["lending_pool"], "get_pool_info", ["XLM"]),
            self.call(self._contracts["s_token"], "exchange_rate"),
        )
        try:
            return ProtocolStats.from_rpc(total_supply, pool_info, exchange_rate)
        except ValueError as exc:
            raise UpstreamUnavailable(f"malformed protocol stats: {exc}", method="get_pool_info") from exc

    async def get_interest_rates(self) -> InterestRates:
        readings = await asyncio.gather(*(self._pool_rates(asset) for asset in self._assets))
        rates = dict(zip(self._assets, readings))
        if rates and all(r.status == "unknown" for r in rates.values()):
            raise UpstreamUnavailable("no interest rates available for any tracked asset", method="get_pool_info")
        return InterestRates(rates=rates)

    async def get_asset_prices(self) -> AssetPrices:
        readings = await asyncio.gather(*(self._price(asset) for asset in self._assets))
        prices = dict(zip(self._assets, readings))
        if prices and all(p.status == "unknown" for p in prices.values()):
            raise UpstreamUnavailable("no prices available for any tracked asset", method="get_price_unchecked")
        return AssetPrices(prices=prices)

    async def health_check(self) -> HealthStatus:
        """Probe the node; reports failures in the result instead of raising."""
        start = time.perf_counter()
        health, network = await asyncio.gather(
            self.rpc("getHealth"),
            self.rpc("getNetwork"),
            return_exceptions=True,
        )
        rpc_status = _component(health)
        network_status = _component(network)
        return HealthStatus(
            healthy=rpc_status.status == "ok" and network_status.status == "ok",
            duration_ms=round(_elapsed_ms(start), 3),
            rpc=rpc_status,
            network=network_status,
            contracts=dict(self._contracts),
        )

    async def _pool_rates(self, asset: str) -> PoolRates:
        try:
            pool_info = await self.call(self._contracts["lending_pool"], "get_pool_info", [asset])
        except UpstreamError as exc:
            logger.warning("Failed to get rates for %s: %s", asset, exc)
            return PoolRates.unknown()
        try:
            return PoolRates.from_pool_info(pool_info)
        except (ArithmeticError, ValueError, TypeError) as exc:
            logger.warning("Pool info for %s is malformed: %s", asset, exc)
            return PoolRates.unknown()

    async def _price(self, asset: str) -> PriceReading:
        try:
            raw = await self.call(self._contracts["price_oracle"], "get_price_unchecked", [asset])
        except UpstreamError as exc:
            logger.warning("Failed to get price for %s from oracle: %s", asset, exc)
        else:
            try:
                return PriceReading(price=str(to_int(raw)))
            except ValueError as exc:
                logger.warning("Oracle price for %s is unusable: %s", asset, exc)
        return await self._fallback_price(asset)

    async def _fallback_price(self, asset: str) -> PriceReading:
        if self._price_fallback is None or not self._price_fallback.supports(asset):
            return PriceReading.unknown()
        try:
            price = await self._price_fallback.get_price(asset)
        except UpstreamError as exc:
            logger.warning("Failed to get external price for %s: %s", asset, exc)
            return PriceReading.unknown()
        logger.info("Using external price for %s", asset)
        return PriceReading(price=price)


def _component(result: object) -> ComponentHealth:
    if isinstance(result, BaseException):
        return ComponentHealth(status="error", error=str(result))
    return ComponentHealth(status="ok")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0
