"""Configuration loading and validation."""

import os
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from lending_cache.upstream.external import COINGECKO_SIMPLE_PRICE_URL, DEFAULT_COIN_IDS


class ContractsConfig(BaseModel):
    """Contract ids on the ledger."""

    lending_pool: str | None = None
    s_token: str | None = None
    price_oracle: str | None = None


class PriceFallbackConfig(BaseModel):
    """External USD price feed consulted when the oracle has no reading."""

    enabled: bool = True
    url: str = COINGECKO_SIMPLE_PRICE_URL
    timeout: float = 5.0
    coin_ids: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_COIN_IDS))


class UpstreamConfig(BaseModel):
    """Ledger RPC endpoint configuration."""

    rpc_url: str = "http://localhost:8000/rpc"
    rpc_url_env: str = "LEDGER_RPC_URL"
    call_timeout: float = 30.0
    assets: list[str] = Field(default_factory=lambda: ["stETH", "XLM", "USDC"])
    contracts: ContractsConfig = Field(default_factory=ContractsConfig)
    price_fallback: PriceFallbackConfig = Field(default_factory=PriceFallbackConfig)

    def resolved_rpc_url(self) -> str:
        """Return the RPC URL, preferring the environment variable when set."""
        return os.environ.get(self.rpc_url_env) or self.rpc_url


class CacheConfig(BaseModel):
    """Cache backend configuration."""

    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"
    connect_timeout: float = 5.0
    default_ttl: int = 300


class JobConfig(BaseModel):
    """Schedule for one refresh job."""

    enabled: bool = True
    interval_seconds: float
    ttl_seconds: float


def _default_jobs() -> dict[str, JobConfig]:
    return {
        "protocol_stats": JobConfig(interval_seconds=300, ttl_seconds=300),
        "interest_rates": JobConfig(interval_seconds=120, ttl_seconds=120),
        "asset_prices": JobConfig(interval_seconds=60, ttl_seconds=60),
        "market_snapshot": JobConfig(interval_seconds=180, ttl_seconds=180),
        "system_health": JobConfig(interval_seconds=1800, ttl_seconds=1800),
    }


class MonitoringConfig(BaseModel):
    """Logging and HTTP server configuration."""

    structured_logging: bool = False
    log_file: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 3001


class AppConfig(BaseModel):
    """Top-level application configuration."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    jobs: dict[str, JobConfig] = Field(default_factory=_default_jobs)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)


def load_config(path: Path) -> AppConfig:
    """Load config from a YAML file.

    Jobs named in the file override the defaults one by one; jobs the file
    does not mention keep their default schedule.
    """
    load_dotenv(path.parent / ".env", override=False)
    raw = yaml.safe_load(path.read_text()) or {}
    jobs = {name: job.model_dump() for name, job in _default_jobs().items()}
    for name, overrides in (raw.pop("jobs", None) or {}).items():
        jobs[name] = {**jobs.get(name, {}), **(overrides or {})}
    return AppConfig(**raw, jobs=jobs)
