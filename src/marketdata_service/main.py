from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from .aggregator import MarketDataAggregator
from .api import api_router
from .cache import CacheStore, build_cache_backend
from .config import get_settings
from .observability import PROMETHEUS_CONTENT_TYPE, generate_prometheus_metrics
from .rate_limit import FixedWindowRateLimiter
from .redis_client import get_redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger = logging.getLogger(settings.service_name)
    logger.info("Starting %s", settings.service_name)
    redis_client = get_redis()
    if settings.cache_backend == "redis" and not await redis_client.connect():
        logger.warning("Redis cache unavailable; lookups will fall through to providers")

    cache = CacheStore(
        build_cache_backend(settings, redis_client=redis_client),
        single_flight=settings.cache_single_flight,
    )
    aggregator = MarketDataAggregator.from_settings(settings, cache=cache)
    app.state.aggregator = aggregator
    app.state.rate_limiter = FixedWindowRateLimiter(
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
    )
    if settings.use_mock_data:
        logger.warning("Mock data mode enabled; upstream providers will not be called")
    yield
    logger.info("Stopping %s", settings.service_name)
    await aggregator.close()
    app.state.aggregator = None
    await redis_client.disconnect()
    logger.info("%s stopped successfully", settings.service_name)


settings = get_settings()

log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
log_path = Path(settings.log_dir or "logs")
log_path.mkdir(parents=True, exist_ok=True)
file_handler = logging.FileHandler(log_path / "marketdata_service.log")
file_handler.setFormatter(
    logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
)
root_logger = logging.getLogger()
root_logger.setLevel(log_level)
root_logger.addHandler(file_handler)
app = FastAPI(title="Market Data Service", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix="/api")


@app.get("/metrics")
async def prometheus_metrics() -> Response:
    payload = generate_prometheus_metrics()
    return Response(content=payload, media_type=PROMETHEUS_CONTENT_TYPE)


async def _cache_health() -> dict[str, object]:
    aggregator = getattr(app.state, "aggregator", None)
    if aggregator is None:
        return {"alive": False, "backend": settings.cache_backend}
    return await aggregator.cache.health_check()


def _provider_health() -> dict[str, object]:
    aggregator = getattr(app.state, "aggregator", None)
    if aggregator is None:
        return {}
    return aggregator.provider_status()


@app.get("/healthz")
async def healthz() -> dict[str, object]:
    return {
        "status": "ok",
        "mockMode": settings.use_mock_data,
        "providers": _provider_health(),
    }


@app.get("/readyz")
async def readyz() -> dict[str, object]:
    cache_status = await _cache_health()
    overall = "ok" if cache_status.get("alive") else "degraded"
    return {
        "status": overall,
        "cache": cache_status,
        "providers": _provider_health(),
    }
