from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Protocol, Sequence, TypeVar

import httpx

from .cache import CacheStore, MemoryCacheBackend
from .config import Settings, get_settings
from .market_data.catalog import PREDEFINED_ASSETS, classify_symbol, filter_assets, find_asset, paginate
from .market_data.mock import MockDataGenerator
from .market_data.models import AssetPrice, AssetType, ExchangeRate, HistoricalDataPoint, MarketAsset
from .observability import record_mock_fallback, record_provider_demotion, record_provider_request
from .providers import (
    AlphaVantageProvider,
    CoinGeckoProvider,
    CoinMarketCapProvider,
    MarketDataProvider,
    MetalsProvider,
)

T = TypeVar("T")
P = TypeVar("P")

logger = logging.getLogger("marketdata.aggregator")


class OhlcSource(Protocol):
    name: str

    async def fetch_ohlc(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        ...

    def is_rate_limit_error(self, error: BaseException) -> bool:
        ...


class ListingSource(Protocol):
    name: str

    async def fetch_top_assets(self, limit: int = 100) -> list[MarketAsset]:
        ...

    def is_rate_limit_error(self, error: BaseException) -> bool:
        ...


class ExchangeRateSource(Protocol):
    name: str

    async def fetch_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        ...

    def is_rate_limit_error(self, error: BaseException) -> bool:
        ...


@dataclass(slots=True)
class ProviderState:
    """
    Process-lifetime demotion flags keyed by provider name.

    Flags only move from False to True; there is no timed recovery.
    """

    rate_limited: Dict[str, bool] = field(default_factory=dict)

    def is_rate_limited(self, provider: str) -> bool:
        return self.rate_limited.get(provider, False)

    def mark_rate_limited(self, provider: str) -> bool:
        if self.rate_limited.get(provider):
            return False
        self.rate_limited[provider] = True
        return True

    def snapshot(self) -> dict[str, bool]:
        return dict(self.rate_limited)


@dataclass(slots=True)
class AggregatorConfig:
    use_mock_data: bool = False
    demote_on_any_failure: bool = True
    price_ttl_seconds: float = 3600
    historical_ttl_seconds: float = 3600
    exchange_rate_ttl_seconds: float = 21_600
    stock_ttl_seconds: float = 21_600
    metals_ttl_seconds: float = 21_600
    asset_ttl_seconds: float = 3600

    @classmethod
    def from_settings(cls, settings: Settings) -> "AggregatorConfig":
        return cls(
            use_mock_data=settings.use_mock_data,
            demote_on_any_failure=settings.demote_on_any_failure,
            price_ttl_seconds=settings.price_ttl_seconds,
            historical_ttl_seconds=settings.historical_ttl_seconds,
            exchange_rate_ttl_seconds=settings.exchange_rate_ttl_seconds,
            stock_ttl_seconds=settings.stock_ttl_seconds,
            metals_ttl_seconds=settings.metals_ttl_seconds,
            asset_ttl_seconds=settings.asset_ttl_seconds,
        )


async def with_timeout(awaitable: Awaitable[T], seconds: float) -> T | None:
    """Race ``awaitable`` against a timer; ``None`` when the timer wins."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.warning("Market data request timed out after %.2fs", seconds)
        return None


class MarketDataAggregator:
    """
    Routes market data requests across providers in priority order.

    Spot prices fall back to the mock generator when every provider fails;
    historical series fall back to an empty list. A provider that signals rate
    limiting is demoted for the rest of the process and skipped on later
    requests, except when it is the last provider left to try. Other failures
    only demote the primary of a spot price chain.
    """

    def __init__(
        self,
        price_providers: Sequence[MarketDataProvider],
        *,
        cache: CacheStore,
        history_providers: Sequence[MarketDataProvider] | None = None,
        ohlc_provider: OhlcSource | None = None,
        listing_providers: Sequence[ListingSource] = (),
        exchange_rate_provider: ExchangeRateSource | None = None,
        state: ProviderState | None = None,
        mock: MockDataGenerator | None = None,
        config: AggregatorConfig | None = None,
    ) -> None:
        self._price_providers = list(price_providers)
        self._history_providers = list(history_providers if history_providers is not None else price_providers)
        self._ohlc_provider = ohlc_provider
        self._listing_providers = list(listing_providers)
        self._exchange_rate_provider = exchange_rate_provider
        self._cache = cache
        self._state = state or ProviderState()
        self._mock = mock or MockDataGenerator()
        self._config = config or AggregatorConfig()
        self._logger = logger

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        cache: CacheStore | None = None,
        client: httpx.AsyncClient | None = None,
        state: ProviderState | None = None,
    ) -> "MarketDataAggregator":
        settings = settings or get_settings()
        coinmarketcap = CoinMarketCapProvider(CoinMarketCapProvider.config_from_settings(settings), client=client)
        coingecko = CoinGeckoProvider(CoinGeckoProvider.config_from_settings(settings), client=client)
        alpha_vantage = AlphaVantageProvider(
            AlphaVantageProvider.config_from_settings(settings),
            client=client,
            min_interval_seconds=settings.alpha_vantage_min_interval_seconds,
            max_wait_seconds=settings.alpha_vantage_max_wait_seconds,
        )
        metals = MetalsProvider(MetalsProvider.config_from_settings(settings), client=client)
        return cls(
            [coinmarketcap, coingecko, alpha_vantage, metals],
            cache=cache or CacheStore(MemoryCacheBackend(), single_flight=settings.cache_single_flight),
            history_providers=[coingecko, alpha_vantage],
            ohlc_provider=coingecko,
            listing_providers=[coingecko, coinmarketcap],
            exchange_rate_provider=alpha_vantage,
            state=state,
            config=AggregatorConfig.from_settings(settings),
        )

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def cache(self) -> CacheStore:
        return self._cache

    async def close(self) -> None:
        seen: set[int] = set()
        for provider in [*self._price_providers, *self._history_providers]:
            if id(provider) in seen:
                continue
            seen.add(id(provider))
            await provider.close()

    def provider_status(self) -> dict[str, dict[str, Any]]:
        names: list[str] = []
        for provider in [*self._price_providers, *self._history_providers]:
            if provider.name not in names:
                names.append(provider.name)
        return {name: {"rateLimited": self._state.is_rate_limited(name)} for name in names}

    async def get_asset_price(self, symbol: str) -> AssetPrice:
        normalized = symbol.strip().upper()
        if self._config.use_mock_data:
            return self._mock.generate_mock_price(normalized)
        asset_type = classify_symbol(normalized)
        chain = [provider for provider in self._price_providers if provider.supports_price(asset_type)]

        async def fetch() -> dict[str, Any] | None:
            price = await self._run_chain(
                "price",
                normalized,
                chain,
                lambda provider: provider.fetch_asset_price(normalized),
                lambda result: result is None,
                demote_primary=True,
            )
            return price.to_dict() if price is not None else None

        payload = await self._cache.get_cached_data(f"price:{normalized}", fetch, self._price_ttl(asset_type))
        if payload is None:
            self._logger.warning("All price providers failed for %s; serving mock data", normalized)
            record_mock_fallback("price")
            return self._mock.generate_mock_price(normalized)
        return AssetPrice.from_dict(payload)

    async def get_asset_price_in_btc(self, symbol: str) -> AssetPrice:
        price = await self.get_asset_price(symbol)
        if price.symbol == "BTC":
            price.price_in_btc = 1.0
            return price
        if not price.price_in_btc:
            btc = await self.get_asset_price("BTC")
            if btc.price > 0:
                price.price_in_btc = price.price / btc.price
        return price

    async def get_historical_data(self, symbol: str, days: int = 7) -> list[HistoricalDataPoint]:
        normalized = symbol.strip().upper()
        days = max(int(days), 1)
        if self._config.use_mock_data:
            return self._mock.generate_mock_historical_series(normalized, days)
        asset_type = classify_symbol(normalized)
        chain = [provider for provider in self._history_providers if provider.supports_history(asset_type)]

        async def fetch() -> list[dict[str, Any]]:
            points = await self._run_chain(
                "historical",
                normalized,
                chain,
                lambda provider: provider.fetch_historical_data(normalized, days),
                lambda result: not result,
            )
            return [point.to_dict() for point in points or []]

        rows = await self._cache.get_cached_data(
            f"historical:{normalized}:{days}", fetch, self._config.historical_ttl_seconds
        )
        if not rows:
            self._logger.warning("No historical data available for %s (%s days)", normalized, days)
            return []
        return [HistoricalDataPoint.from_dict(row) for row in rows]

    async def get_ohlc_data(self, symbol: str, days: int = 30) -> list[HistoricalDataPoint]:
        normalized = symbol.strip().upper()
        if self._config.use_mock_data:
            return self._mock.generate_mock_historical_series(normalized, days)
        if self._ohlc_provider is None:
            return []
        ohlc_provider = self._ohlc_provider

        async def fetch() -> list[dict[str, Any]]:
            points = await self._run_chain(
                "ohlc",
                normalized,
                [ohlc_provider],
                lambda provider: provider.fetch_ohlc(normalized, days),
                lambda result: not result,
            )
            return [point.to_dict() for point in points or []]

        rows = await self._cache.get_cached_data(f"ohlc:{normalized}:{days}", fetch, self._config.historical_ttl_seconds)
        return [HistoricalDataPoint.from_dict(row) for row in rows or []]

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        source = from_currency.strip().upper()
        target = to_currency.strip().upper()
        if self._exchange_rate_provider is None or self._config.use_mock_data:
            return None
        exchange_rate_provider = self._exchange_rate_provider

        async def fetch() -> dict[str, Any] | None:
            rate = await self._run_chain(
                "exchange_rate",
                f"{source}/{target}",
                [exchange_rate_provider],
                lambda provider: provider.fetch_exchange_rate(source, target),
                lambda result: result is None,
            )
            return rate.to_dict() if rate is not None else None

        payload = await self._cache.get_cached_data(
            f"exchange:{source}:{target}", fetch, self._config.exchange_rate_ttl_seconds
        )
        return ExchangeRate.from_dict(payload) if payload else None

    async def get_asset_by_symbol(self, symbol: str) -> MarketAsset | None:
        normalized = symbol.strip().upper()

        async def fetch() -> dict[str, Any] | None:
            asset = find_asset(normalized)
            return asset.to_dict() if asset else None

        payload = await self._cache.get_cached_data(f"asset:{normalized}", fetch, self._config.asset_ttl_seconds)
        return MarketAsset.from_dict(payload) if payload else None

    async def list_available_assets(
        self,
        *,
        category: str | None = None,
        keywords: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[MarketAsset]:
        assets = filter_assets(PREDEFINED_ASSETS, category=category, keywords=keywords)
        return paginate(assets, page, page_size)

    async def search_assets(self, query: str, limit: int = 10) -> list[MarketAsset]:
        if not query.strip():
            return []
        return filter_assets(PREDEFINED_ASSETS, keywords=query.strip())[: max(limit, 0)]

    async def get_top_assets(self, limit: int = 10) -> list[MarketAsset]:
        fallback = [asset for asset in PREDEFINED_ASSETS if asset.type is AssetType.CRYPTOCURRENCY][:limit]
        if self._config.use_mock_data or not self._listing_providers:
            return fallback

        async def fetch() -> list[dict[str, Any]]:
            assets = await self._run_chain(
                "top_assets",
                str(limit),
                self._listing_providers,
                lambda provider: provider.fetch_top_assets(limit),
                lambda result: not result,
            )
            return [asset.to_dict() for asset in (assets or [])[:limit]]

        rows = await self._cache.get_cached_data(f"top_assets:{limit}", fetch, self._config.price_ttl_seconds)
        if not rows:
            return fallback
        return [MarketAsset.from_dict(row) for row in rows]

    async def _run_chain(
        self,
        operation: str,
        subject: str,
        providers: Sequence[P],
        call: Callable[[P], Awaitable[T]],
        is_empty: Callable[[T], bool],
        *,
        demote_primary: bool = False,
    ) -> T | None:
        for index, provider in enumerate(providers):
            name = provider.name  # type: ignore[attr-defined]
            is_last = index == len(providers) - 1
            if not is_last and self._state.is_rate_limited(name):
                self._logger.debug("Skipping demoted provider %s for %s %s", name, operation, subject)
                record_provider_request(name, operation, "skipped")
                continue
            start = time.perf_counter()
            try:
                result = await call(provider)
            except Exception as exc:
                latency_ms = (time.perf_counter() - start) * 1000
                rate_limited = provider.is_rate_limit_error(exc)  # type: ignore[attr-defined]
                record_provider_request(name, operation, "rate_limited" if rate_limited else "failure", latency_ms)
                self._logger.warning("%s %s failed for %s: %s", name, operation, subject, exc)
                primary_failure = demote_primary and index == 0 and not is_last
                if rate_limited or (self._config.demote_on_any_failure and primary_failure):
                    self._demote(name)
                continue
            latency_ms = (time.perf_counter() - start) * 1000
            if is_empty(result):
                record_provider_request(name, operation, "empty", latency_ms)
                continue
            record_provider_request(name, operation, "success", latency_ms)
            return result
        return None

    def _demote(self, provider: str) -> None:
        if self._state.mark_rate_limited(provider):
            record_provider_demotion(provider)
            self._logger.warning("Provider %s demoted for the remainder of the process", provider)

    def _price_ttl(self, asset_type: AssetType) -> float:
        if asset_type in (AssetType.STOCKS, AssetType.INDICES):
            return self._config.stock_ttl_seconds
        if asset_type is AssetType.COMMODITY:
            return self._config.metals_ttl_seconds
        return self._config.price_ttl_seconds


__all__ = [
    "AggregatorConfig",
    "MarketDataAggregator",
    "ProviderState",
    "with_timeout",
]
