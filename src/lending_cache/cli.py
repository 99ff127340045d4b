"""CLI entry point for lending-cache."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated

import typer

from lending_cache import __version__
from lending_cache.cache.backends import MemoryBackend, RedisBackend
from lending_cache.cache.store import CacheStore
from lending_cache.config import AppConfig, load_config
from lending_cache.scheduler import Scheduler, build_jobs
from lending_cache.upstream.client import LedgerClient
from lending_cache.upstream.external import ExternalPriceSource

logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lending-cache {__version__}")
        raise typer.Exit()


app = typer.Typer(name="lending-cache", help="Lending-market data cache with background refresh")


@app.callback()
def main(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Show version and exit", callback=_version_callback, is_eager=True)
    ] = False,
) -> None:
    """Lending-market data cache with background refresh."""


DEFAULT_CONFIG = Path("config.yaml")

ConfigOption = Annotated[Path, typer.Option("--config", "-c", help="Path to config.yaml")]


def _load_config(config_path: Path) -> AppConfig:
    """Load config from file, warning if the file does not exist."""
    if config_path.exists():
        return load_config(config_path)
    logger.warning("Config file %s not found, using defaults", config_path)
    return AppConfig()


def _setup_logging(cfg: AppConfig) -> None:
    """Configure logging based on monitoring config."""
    level = getattr(logging, cfg.monitoring.log_level)
    if cfg.monitoring.structured_logging:
        from lending_cache.monitoring.logging import setup_structured_logging  # noqa: PLC0415

        log_file = Path(cfg.monitoring.log_file) if cfg.monitoring.log_file else None
        setup_structured_logging(log_file=log_file, level=level)
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _build_store(cfg: AppConfig) -> CacheStore:
    if cfg.cache.backend == "redis":
        backend = RedisBackend(cfg.cache.redis_url, connect_timeout=cfg.cache.connect_timeout)
        return CacheStore(backend, default_ttl=cfg.cache.default_ttl)
    return CacheStore(MemoryBackend(), default_ttl=cfg.cache.default_ttl)


def _build_client(cfg: AppConfig) -> LedgerClient:
    fallback_cfg = cfg.upstream.price_fallback
    fallback = None
    if fallback_cfg.enabled:
        fallback = ExternalPriceSource(fallback_cfg.url, coin_ids=fallback_cfg.coin_ids, timeout=fallback_cfg.timeout)
    return LedgerClient(
        cfg.upstream.resolved_rpc_url(),
        contracts=cfg.upstream.contracts.model_dump(),
        assets=cfg.upstream.assets,
        timeout=cfg.upstream.call_timeout,
        price_fallback=fallback,
    )


def _build_scheduler(cfg: AppConfig) -> tuple[CacheStore, LedgerClient, Scheduler]:
    store = _build_store(cfg)
    client = _build_client(cfg)
    return store, client, Scheduler(store, build_jobs(client, cfg.jobs))


@app.command()
def serve(
    config: ConfigOption = DEFAULT_CONFIG,
    host: Annotated[str | None, typer.Option("--host", help="API bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", help="API port")] = None,
) -> None:
    """Start the HTTP API with the background refresh scheduler."""
    cfg = _load_config(config)
    _setup_logging(cfg)

    resolved_host = host if host is not None else cfg.monitoring.api_host
    resolved_port = port if port is not None else cfg.monitoring.api_port

    try:
        import uvicorn  # noqa: PLC0415

        from lending_cache.api import create_app  # noqa: PLC0415

        store, client, scheduler = _build_scheduler(cfg)
        fastapi_app = create_app(store, scheduler, client=client)
    except ImportError:
        typer.echo("The API server requires optional dependencies: pip install lending-cache[api]")
        raise typer.Exit(code=1)

    typer.echo(f"API starting on http://{resolved_host}:{resolved_port} ({cfg.cache.backend} cache)")
    uvicorn.run(fastapi_app, host=resolved_host, port=resolved_port, log_level=cfg.monitoring.log_level.lower())


@app.command()
def refresh(config: ConfigOption = DEFAULT_CONFIG) -> None:
    """Refresh every dataset once and report the outcome."""
    cfg = _load_config(config)
    _setup_logging(cfg)

    async def _run() -> dict[str, object]:
        store, client, scheduler = _build_scheduler(cfg)
        try:
            return await scheduler.refresh_all()
        finally:
            await client.aclose()
            await store.close()

    summary = asyncio.run(_run())
    typer.echo(f"Refreshed: {summary['successful']} successful, {summary['failed']} failed, {summary['total']} total")
    if summary["failed"]:
        raise typer.Exit(code=1)


@app.command("clear-cache")
def clear_cache(config: ConfigOption = DEFAULT_CONFIG) -> None:
    """Invalidate every cached namespace."""
    cfg = _load_config(config)
    _setup_logging(cfg)
    if cfg.cache.backend == "memory":
        typer.echo("Warning: the memory backend is per-process; nothing outside this command is affected.")

    async def _run() -> int:
        store, client, scheduler = _build_scheduler(cfg)
        try:
            return await scheduler.clear_cache()
        finally:
            await client.aclose()
            await store.close()

    typer.echo(f"Cleared {asyncio.run(_run())} cache keys")


@app.command()
def health(config: ConfigOption = DEFAULT_CONFIG) -> None:
    """Probe the ledger RPC endpoint once."""
    cfg = _load_config(config)
    _setup_logging(cfg)

    async def _run() -> dict[str, object]:
        async with _build_client(cfg) as client:
            status = await client.health_check()
        return status.model_dump()

    result = asyncio.run(_run())
    typer.echo(json.dumps(result, indent=2))
    if not result["healthy"]:
        raise typer.Exit(code=1)
