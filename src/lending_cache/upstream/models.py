"""Pydantic models for normalized ledger datasets.

On-chain quantities are integers that can exceed the range of a float, so
every amount, rate and price is carried as a decimal string.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

# Lending pool rate model: 7-decimal fixed point, utilization in basis points.
BASE_BORROW_RATE = 2_0000000
BORROW_RATE_SLOPE = 5_0000000
RATE_TO_APY_DIVISOR = 1_000_000

ReadingStatus = Literal["ok", "unknown"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_int(value: Any) -> int:
    """Parse a normalized decimal-string quantity.

    Raises ``ValueError`` for anything that is not a finite integral amount,
    including ``None``; a missing value is never read as zero.
    """
    if value is None or isinstance(value, bool) or not isinstance(value, (str, int, Decimal)):
        raise ValueError(f"expected a decimal quantity, got {value!r}")
    try:
        parsed = Decimal(str(value).strip())
    except ArithmeticError as exc:
        raise ValueError(f"expected a decimal quantity, got {value!r}") from exc
    if not parsed.is_finite() or parsed != parsed.to_integral_value():
        raise ValueError(f"expected an integral quantity, got {value!r}")
    return int(parsed)


def borrow_rate(utilization: int) -> int:
    return BASE_BORROW_RATE + (BORROW_RATE_SLOPE * utilization) // 10000


def supply_rate(borrow: int, utilization: int) -> int:
    return (borrow * utilization) // 10000


def rate_to_apy(rate: int) -> str:
    return str(Decimal(rate) / RATE_TO_APY_DIVISOR)


def _pool_totals(pool_info: Any) -> tuple[int, int, int]:
    """Return ``(supplied, borrowed, utilization)`` from a ``get_pool_info`` result."""
    if not isinstance(pool_info, list) or len(pool_info) < 3:
        raise ValueError(f"malformed pool info: {pool_info!r}")
    supplied, borrowed, utilization = (to_int(v) for v in pool_info[:3])
    return supplied, borrowed, utilization


class ProtocolStats(BaseModel):
    """Protocol-wide totals for the lending pool."""

    total_supply: str
    total_supplied: str
    total_borrowed: str
    utilization_rate: str
    exchange_rate: str
    total_liquidity: str
    timestamp: str = Field(default_factory=utc_now_iso)

    @classmethod
    def from_rpc(cls, total_supply: Any, pool_info: list[Any] | None, exchange_rate: Any) -> "ProtocolStats":
        """Build stats from ``total_supply``, ``get_pool_info`` and ``exchange_rate`` results.

        Raises ``ValueError`` when any part is missing or malformed.
        """
        supplied, borrowed, utilization = _pool_totals(pool_info)
        return cls(
            total_supply=str(to_int(total_supply)),
            total_supplied=str(supplied),
            total_borrowed=str(borrowed),
            utilization_rate=str(utilization),
            exchange_rate=str(to_int(exchange_rate)),
            total_liquidity=str(max(0, supplied - borrowed)),
        )


class PoolRates(BaseModel):
    """Interest-rate reading for one asset's pool."""

    status: ReadingStatus = "ok"
    total_supplied: str | None = None
    total_borrowed: str | None = None
    utilization_rate: str | None = None
    borrow_rate: str | None = None
    supply_rate: str | None = None
    borrow_apy: str | None = None
    supply_apy: str | None = None
    available_liquidity: str | None = None

    @classmethod
    def from_pool_info(cls, pool_info: list[Any]) -> "PoolRates":
        supplied, borrowed, utilization = _pool_totals(pool_info)
        borrow = borrow_rate(utilization)
        supply = supply_rate(borrow, utilization)
        return cls(
            total_supplied=str(supplied),
            total_borrowed=str(borrowed),
            utilization_rate=str(utilization),
            borrow_rate=str(borrow),
            supply_rate=str(supply),
            borrow_apy=rate_to_apy(borrow),
            supply_apy=rate_to_apy(supply),
            available_liquidity=str(max(0, supplied - borrowed)),
        )

    @classmethod
    def unknown(cls) -> "PoolRates":
        return cls(status="unknown")


class InterestRates(BaseModel):
    rates: dict[str, PoolRates]
    timestamp: str = Field(default_factory=utc_now_iso)


class PriceReading(BaseModel):
    """Tri-state price: a real value (possibly ``"0"``) or ``unknown``."""

    status: ReadingStatus = "ok"
    price: str | None = None

    @classmethod
    def unknown(cls) -> "PriceReading":
        return cls(status="unknown")


class AssetPrices(BaseModel):
    prices: dict[str, PriceReading]
    timestamp: str = Field(default_factory=utc_now_iso)


class ComponentHealth(BaseModel):
    status: Literal["ok", "error"]
    error: str | None = None


class HealthStatus(BaseModel):
    """Connectivity report for the ledger RPC endpoint."""

    healthy: bool
    duration_ms: float
    rpc: ComponentHealth
    network: ComponentHealth
    contracts: dict[str, str | None] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now_iso)
