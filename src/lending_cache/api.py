"""Read surface over the cache, plus a thin FastAPI app for HTTP consumers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from lending_cache import __version__
from lending_cache.cache import keys
from lending_cache.cache.store import MISS, CacheStore
from lending_cache.scheduler import Scheduler


async def read_cached(store: CacheStore, key: str) -> Any:
    """Return the cached value for ``key`` or :data:`MISS`.

    Never calls upstream; on a miss the caller decides what to serve.
    """
    return await store.get(key)


def create_app(
    store: CacheStore,
    scheduler: Scheduler,
    *,
    client: Any = None,
    start_scheduler: bool = True,
) -> Any:
    """Create the FastAPI application.

    Args:
        store: Cache the read routes serve from; closed on shutdown.
        scheduler: Scheduler behind the admin routes; initialized on startup
            when ``start_scheduler`` is true.
        client: Upstream client whose ``aclose`` is awaited on shutdown.

    Returns:
        A FastAPI application instance.
    """
    from fastapi import FastAPI  # noqa: PLC0415
    from fastapi.responses import JSONResponse  # noqa: PLC0415

    @asynccontextmanager
    async def lifespan(_app: Any) -> Any:
        if start_scheduler:
            await scheduler.initialize()
        try:
            yield
        finally:
            if client is not None:
                await client.aclose()
            await store.close()

    app = FastAPI(title="Lending Market Cache API", version=__version__, lifespan=lifespan)

    async def cached_response(key: str) -> JSONResponse:
        value = await read_cached(store, key)
        if value is MISS:
            return JSONResponse(
                {"error": "data not yet available", "key": key},
                status_code=503,
                headers={"X-Cache": "MISS"},
            )
        return JSONResponse(value, headers={"X-Cache": "HIT"})

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__, "scheduler": scheduler.state.value})

    @app.get("/api/protocol/stats")
    async def api_protocol_stats() -> JSONResponse:
        return await cached_response(keys.PROTOCOL_STATS)

    @app.get("/api/rates")
    async def api_rates() -> JSONResponse:
        return await cached_response(keys.INTEREST_RATES)

    @app.get("/api/prices")
    async def api_prices() -> JSONResponse:
        return await cached_response(keys.ASSET_PRICES)

    @app.get("/api/prices/{asset}")
    async def api_asset_price(asset: str) -> JSONResponse:
        return await cached_response(keys.asset_price(asset))

    @app.get("/api/markets")
    async def api_markets() -> JSONResponse:
        return await cached_response(keys.MARKET_DATA)

    @app.get("/api/system/health")
    async def api_system_health() -> JSONResponse:
        return await cached_response(keys.SYSTEM_HEALTH)

    @app.get("/api/admin/jobs")
    async def api_jobs() -> JSONResponse:
        return JSONResponse(scheduler.job_statuses())

    @app.post("/api/admin/refresh")
    async def api_refresh() -> JSONResponse:
        return JSONResponse(await scheduler.refresh_all())

    @app.post("/api/admin/cache/clear")
    async def api_clear_cache() -> JSONResponse:
        return JSONResponse({"cleared": await scheduler.clear_cache()})

    @app.get("/api/admin/cache/stats")
    async def api_cache_stats() -> JSONResponse:
        return JSONResponse(await store.stats())

    return app
