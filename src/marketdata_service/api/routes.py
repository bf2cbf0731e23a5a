from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..aggregator import MarketDataAggregator, with_timeout
from ..cache import FileCacheBackend
from ..config import Settings, get_settings
from .dependencies import get_aggregator, rate_limited

router = APIRouter(dependencies=[Depends(rate_limited)])


def _timed_out(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=f"Timed out fetching {what}")


@router.get("/price/{symbol}")
async def get_price(
    symbol: str,
    aggregator: MarketDataAggregator = Depends(get_aggregator),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    price = await with_timeout(aggregator.get_asset_price_in_btc(symbol), settings.request_timeout_seconds)
    if price is None:
        raise _timed_out(f"price for {symbol}")
    return price.to_dict()


@router.get("/historical/{symbol}")
async def get_historical(
    symbol: str,
    days: int = Query(7, ge=1, le=3650),
    aggregator: MarketDataAggregator = Depends(get_aggregator),
    settings: Settings = Depends(get_settings),
) -> list[dict[str, Any]]:
    points = await with_timeout(aggregator.get_historical_data(symbol, days), settings.request_timeout_seconds)
    if points is None:
        raise _timed_out(f"historical data for {symbol}")
    return [point.to_dict() for point in points]


@router.get("/ohlc/{symbol}")
async def get_ohlc(
    symbol: str,
    days: int = Query(30, ge=1, le=3650),
    aggregator: MarketDataAggregator = Depends(get_aggregator),
    settings: Settings = Depends(get_settings),
) -> list[dict[str, Any]]:
    points = await with_timeout(aggregator.get_ohlc_data(symbol, days), settings.request_timeout_seconds)
    if points is None:
        raise _timed_out(f"OHLC data for {symbol}")
    return [point.to_dict() for point in points]


@router.get("/exchange-rate")
async def get_exchange_rate(
    from_currency: str = Query(..., alias="from", min_length=1),
    to_currency: str = Query(..., alias="to", min_length=1),
    aggregator: MarketDataAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    rate = await aggregator.get_exchange_rate(from_currency, to_currency)
    if rate is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Exchange rate {from_currency}/{to_currency} unavailable",
        )
    return rate.to_dict()


@router.get("/assets")
async def list_assets(
    category: str | None = None,
    keywords: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    aggregator: MarketDataAggregator = Depends(get_aggregator),
) -> list[dict[str, Any]]:
    assets = await aggregator.list_available_assets(
        category=category,
        keywords=keywords,
        page=page,
        page_size=page_size,
    )
    return [asset.to_dict() for asset in assets]


@router.get("/assets/search")
async def search_assets(
    q: str | None = None,
    limit: int = Query(10, ge=1, le=100),
    aggregator: MarketDataAggregator = Depends(get_aggregator),
) -> list[dict[str, Any]]:
    if not q or not q.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Search query is required")
    assets = await aggregator.search_assets(q, limit)
    return [asset.to_dict() for asset in assets]


@router.get("/assets/popular")
async def popular_assets(
    limit: int = Query(10, ge=1, le=100),
    aggregator: MarketDataAggregator = Depends(get_aggregator),
) -> list[dict[str, Any]]:
    assets = await aggregator.get_top_assets(limit)
    return [asset.to_dict() for asset in assets]


@router.get("/asset/{symbol}")
async def get_asset(
    symbol: str,
    aggregator: MarketDataAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    asset = await aggregator.get_asset_by_symbol(symbol)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Asset not found: {symbol}")
    return asset.to_dict()


@router.get("/providers")
async def provider_status(aggregator: MarketDataAggregator = Depends(get_aggregator)) -> dict[str, Any]:
    return {"providers": aggregator.provider_status()}


@router.get("/cache/metrics")
async def cache_metrics(aggregator: MarketDataAggregator = Depends(get_aggregator)) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "backend": aggregator.cache.backend.name,
        "store": aggregator.cache.stats.as_dict(),
    }
    backend = aggregator.cache.backend
    if isinstance(backend, FileCacheBackend):
        payload["file"] = backend.file_cache.get_metrics()
    return payload
