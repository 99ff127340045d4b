"""External USD price feed used when the on-chain oracle has no reading."""

from __future__ import annotations

import logging
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import httpx

from lending_cache.errors import UpstreamRejected, UpstreamUnavailable
from lending_cache.monitoring.logging import log_upstream_call

logger = logging.getLogger(__name__)

COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_COIN_IDS = {"stETH": "staked-ether", "XLM": "stellar", "USDC": "usd-coin"}
# Oracle prices are 7-decimal fixed point.
PRICE_SCALE = Decimal(10_000_000)


def scale_usd_price(usd: Any) -> str:
    """Convert a USD quote to a 7-decimal fixed-point integer string."""
    if isinstance(usd, bool) or not isinstance(usd, (int, float, str)):
        raise ValueError(f"not a price: {usd!r}")
    try:
        price = Decimal(str(usd))
    except InvalidOperation as exc:
        raise ValueError(f"not a price: {usd!r}") from exc
    if not price.is_finite() or price <= 0:
        raise ValueError(f"not a usable price: {usd!r}")
    return str(int((price * PRICE_SCALE).to_integral_value(rounding=ROUND_HALF_UP)))


class ExternalPriceSource:
    """Reads spot USD prices from a CoinGecko-compatible ``simple/price`` endpoint."""

    def __init__(
        self,
        url: str = COINGECKO_SIMPLE_PRICE_URL,
        *,
        coin_ids: dict[str, str] | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._coin_ids = dict(DEFAULT_COIN_IDS if coin_ids is None else coin_ids)
        self._timeout = timeout
        self._transport = transport

    def supports(self, asset: str) -> bool:
        return asset in self._coin_ids

    async def get_price(self, asset: str) -> str:
        """Return the asset's price as a 7-decimal integer string.

        Raises :class:`UpstreamRejected` for unmapped assets and
        :class:`UpstreamUnavailable` when the feed has no usable quote.
        """
        coin_id = self._coin_ids.get(asset)
        if coin_id is None:
            raise UpstreamRejected(f"no external price id for asset {asset}", method="simple_price")

        action = f"simple_price:{coin_id}"
        start = time.perf_counter()
        try:
            price = await self._fetch(coin_id)
        except (UpstreamUnavailable, UpstreamRejected) as exc:
            log_upstream_call(action, duration_ms=(time.perf_counter() - start) * 1000.0, error=str(exc))
            raise
        log_upstream_call(action, duration_ms=(time.perf_counter() - start) * 1000.0)
        return price

    async def _fetch(self, coin_id: str) -> str:
        params = {"ids": coin_id, "vs_currencies": "usd"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.get(self._url, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"external price request failed: {exc}", method="simple_price") from exc

        if r.status_code >= 500 or r.status_code == 429:
            raise UpstreamUnavailable(f"external price feed returned HTTP {r.status_code}", method="simple_price")
        if r.status_code >= 400:
            raise UpstreamRejected(
                f"external price feed rejected request with HTTP {r.status_code}",
                method="simple_price",
                code=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as exc:
            raise UpstreamUnavailable("external price feed returned an undecodable body", method="simple_price") from exc

        quote = data.get(coin_id) if isinstance(data, dict) else None
        usd = quote.get("usd") if isinstance(quote, dict) else None
        try:
            return scale_usd_price(usd)
        except ValueError as exc:
            raise UpstreamUnavailable(f"no price data received for {coin_id}", method="simple_price") from exc
