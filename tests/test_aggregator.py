from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from marketdata_service.aggregator import AggregatorConfig, MarketDataAggregator, ProviderState, with_timeout
from marketdata_service.cache import CacheStore, MemoryCacheBackend
from marketdata_service.config import Settings
from marketdata_service.market_data.mock import MockDataGenerator
from marketdata_service.market_data.models import AssetPrice, AssetType, ExchangeRate, HistoricalDataPoint, MarketAsset
from marketdata_service.market_data.normalization import normalize_series
from marketdata_service.providers import MarketDataProvider, ProviderConfig, ProviderError, RateLimitError

CRYPTO = frozenset({AssetType.CRYPTOCURRENCY, AssetType.OTHER})
STOCKS = frozenset({AssetType.STOCKS, AssetType.INDICES, AssetType.OTHER})


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class FakeProvider(MarketDataProvider):
    def __init__(
        self,
        name: str,
        *,
        price_types: frozenset[AssetType] = CRYPTO,
        history_types: frozenset[AssetType] = frozenset(),
        prices: dict[str, float] | None = None,
        history: list[HistoricalDataPoint] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.price_types = price_types
        self.history_types = history_types
        super().__init__(ProviderConfig(base_url=f"https://{name}.test"))
        self.prices = prices or {}
        self.history = history or []
        self.error = error
        self.price_calls: list[str] = []
        self.history_calls: list[tuple[str, int]] = []
        self.closed = False

    def is_rate_limit_error(self, error: BaseException) -> bool:
        return super().is_rate_limit_error(error) or "rate limit" in str(error).lower()

    async def fetch_asset_price(self, symbol: str) -> AssetPrice:
        self.price_calls.append(symbol)
        if self.error is not None:
            raise self.error
        if symbol not in self.prices:
            raise ProviderError(f"{symbol} not found", provider=self.name)
        return AssetPrice(
            symbol=symbol,
            name=symbol,
            type=AssetType.CRYPTOCURRENCY,
            price=self.prices[symbol],
            source=self.name,
        )

    async def fetch_historical_data(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        self.history_calls.append((symbol, days))
        if self.error is not None:
            raise self.error
        return list(self.history)

    async def close(self) -> None:
        self.closed = True
        await super().close()


class FakeOhlcSource:
    name = "coingecko"

    def __init__(self, points: list[HistoricalDataPoint]) -> None:
        self.points = points
        self.calls: list[tuple[str, int]] = []

    async def fetch_ohlc(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        self.calls.append((symbol, days))
        return self.points

    def is_rate_limit_error(self, error: BaseException) -> bool:
        return False


class FakeListingSource:
    def __init__(self, name: str, assets: list[MarketAsset] | None = None, error: Exception | None = None) -> None:
        self.name = name
        self.assets = assets or []
        self.error = error

    async def fetch_top_assets(self, limit: int = 100) -> list[MarketAsset]:
        if self.error is not None:
            raise self.error
        return self.assets[:limit]

    def is_rate_limit_error(self, error: BaseException) -> bool:
        return False


class FakeExchangeSource:
    name = "alpha_vantage"

    def __init__(self, rate: float | None) -> None:
        self.rate = rate
        self.calls = 0

    async def fetch_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        self.calls += 1
        if self.rate is None:
            raise ProviderError("unavailable", provider=self.name)
        return ExchangeRate(from_currency, to_currency, self.rate, "2024-03-01T00:00:00Z", source=self.name)

    def is_rate_limit_error(self, error: BaseException) -> bool:
        return False


def _series(*prices: float) -> list[HistoricalDataPoint]:
    return normalize_series([{"timestamp": (index + 1) * 86_400_000, "price": price} for index, price in enumerate(prices)])


def _aggregator(price_providers, *, history_providers=None, config=None, clock=None, **kwargs) -> MarketDataAggregator:
    clock = clock or FakeClock()
    return MarketDataAggregator(
        price_providers,
        cache=CacheStore(MemoryCacheBackend(time_fn=clock), time_fn=clock),
        history_providers=history_providers if history_providers is not None else [],
        mock=MockDataGenerator(rng=random.Random(7)),
        config=config,
        **kwargs,
    )


def test_rate_limited_primary_is_demoted_and_skipped():
    async def _run() -> None:
        cmc = FakeProvider("coinmarketcap", error=ProviderError("Rate limit exceeded"))
        cg = FakeProvider("coingecko", prices={"BTC": 51_000.0, "ETH": 3_060.0})
        aggregator = _aggregator([cmc, cg])

        btc = await aggregator.get_asset_price_in_btc("BTC")
        assert btc.price == 51_000.0
        assert btc.price_in_btc == 1.0
        assert btc.source == "coingecko"
        assert aggregator.state.is_rate_limited("coinmarketcap")

        eth = await aggregator.get_asset_price_in_btc("ETH")
        assert eth.price == 3_060.0
        assert eth.price_in_btc == pytest.approx(0.06)
        assert cmc.price_calls == ["BTC"]
        assert cg.price_calls == ["BTC", "ETH"]
        assert aggregator.provider_status()["coinmarketcap"] == {"rateLimited": True}

    asyncio.run(_run())


def test_exhausted_price_chain_serves_uncached_mock():
    async def _run() -> None:
        cmc = FakeProvider("coinmarketcap", error=ProviderError("boom"))
        cg = FakeProvider("coingecko", error=ProviderError("boom"))
        aggregator = _aggregator([cmc, cg])

        first = await aggregator.get_asset_price("btc")
        second = await aggregator.get_asset_price("BTC")

        assert first.is_mock and second.is_mock
        assert first.symbol == "BTC"
        assert 49_500.0 <= first.price <= 50_500.0
        assert cg.price_calls == ["BTC", "BTC"]
        assert cmc.price_calls == ["BTC"]

    asyncio.run(_run())


def test_last_provider_is_tried_even_when_demoted():
    async def _run() -> None:
        state = ProviderState()
        state.mark_rate_limited("coingecko")
        cmc = FakeProvider("coinmarketcap", error=ProviderError("down"))
        cg = FakeProvider("coingecko", prices={"BTC": 50_100.0})
        aggregator = _aggregator([cmc, cg], state=state)

        price = await aggregator.get_asset_price("BTC")

        assert price.price == 50_100.0
        assert cg.price_calls == ["BTC"]

    asyncio.run(_run())


def test_rate_limit_on_last_provider_is_recorded():
    async def _run() -> None:
        cg = FakeProvider("coingecko", error=RateLimitError("coingecko rate limit exceeded", status_code=429))
        aggregator = _aggregator([cg])

        await aggregator.get_asset_price("BTC")
        await aggregator.get_asset_price("BTC")

        assert aggregator.state.is_rate_limited("coingecko")
        assert cg.price_calls == ["BTC", "BTC"]

    asyncio.run(_run())


def test_generic_failure_demotion_follows_config():
    async def _run() -> None:
        cmc = FakeProvider("coinmarketcap", error=ProviderError("connection reset"))
        cg = FakeProvider("coingecko", prices={"BTC": 50_000.0, "ETH": 3_000.0})
        aggregator = _aggregator([cmc, cg], config=AggregatorConfig(demote_on_any_failure=False))

        await aggregator.get_asset_price("BTC")
        await aggregator.get_asset_price("ETH")

        assert not aggregator.state.is_rate_limited("coinmarketcap")
        assert cmc.price_calls == ["BTC", "ETH"]

    asyncio.run(_run())


def test_only_the_price_primary_is_demoted_on_generic_failure():
    async def _run() -> None:
        cmc = FakeProvider("coinmarketcap", error=ProviderError("connection reset"))
        cg = FakeProvider("coingecko", error=ProviderError("coin not found"))
        av = FakeProvider("alpha_vantage", price_types=STOCKS, prices={"NOTACOIN": 1.0})
        aggregator = _aggregator([cmc, cg, av])

        price = await aggregator.get_asset_price("NOTACOIN")

        assert price.source == "alpha_vantage"
        assert aggregator.state.is_rate_limited("coinmarketcap")
        assert not aggregator.state.is_rate_limited("coingecko")

    asyncio.run(_run())


def test_historical_failure_never_demotes_without_rate_limit_signal():
    async def _run() -> None:
        cg = FakeProvider("coingecko", history_types=CRYPTO, error=ProviderError("coin not found"))
        av = FakeProvider("alpha_vantage", history_types=frozenset(AssetType), history=_series(1.0))
        aggregator = _aggregator([], history_providers=[cg, av])

        await aggregator.get_historical_data("NOTACOIN", 7)
        assert not aggregator.state.is_rate_limited("coingecko")

        cg.error = RateLimitError("429", provider="coingecko", status_code=429)
        await aggregator.get_historical_data("ETH", 7)
        assert aggregator.state.is_rate_limited("coingecko")

    asyncio.run(_run())


def test_unknown_coin_history_keeps_coingecko_serving_known_coins():
    chart = {"prices": [[1_704_067_200_000, 42_000.0], [1_704_153_600_000, 43_000.0]], "total_volumes": []}
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path in ("/api/v3/coins/bitcoin/market_chart", "/api/v3/coins/ethereum/market_chart"):
            return httpx.Response(200, json=chart)
        return httpx.Response(404, json={"error": "coin not found"})

    async def _run() -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        settings = Settings(_env_file=None, coingecko_base_url="https://cg.test/api/v3")
        aggregator = MarketDataAggregator.from_settings(settings, client=client)

        assert len(await aggregator.get_historical_data("BTC", 7)) == 2
        assert await aggregator.get_historical_data("NOTACOIN", 7) == []
        later = await aggregator.get_historical_data("ETH", 7)

        assert [point.price for point in later] == [42_000.0, 43_000.0]
        assert not aggregator.state.is_rate_limited("coingecko")
        await client.aclose()

    asyncio.run(_run())
    assert paths[-1] == "/api/v3/coins/ethereum/market_chart"


def test_price_chain_is_filtered_by_asset_type():
    async def _run() -> None:
        cmc = FakeProvider("coinmarketcap", prices={"BTC": 1.0})
        av = FakeProvider("alpha_vantage", price_types=STOCKS, prices={"AAPL": 180.0})
        metals = FakeProvider("metals", price_types=frozenset({AssetType.COMMODITY}), prices={"XAU": 2_000.0})
        aggregator = _aggregator([cmc, av, metals])

        assert (await aggregator.get_asset_price("AAPL")).price == 180.0
        assert (await aggregator.get_asset_price("XAU")).price == 2_000.0
        assert cmc.price_calls == []
        assert av.price_calls == ["AAPL"]
        assert metals.price_calls == ["XAU"]

    asyncio.run(_run())


def test_price_ttl_depends_on_asset_type():
    async def _run() -> None:
        clock = FakeClock()
        cg = FakeProvider("coingecko", prices={"BTC": 50_000.0})
        av = FakeProvider("alpha_vantage", price_types=STOCKS, prices={"AAPL": 180.0})
        aggregator = _aggregator([cg, av], clock=clock)

        await aggregator.get_asset_price("BTC")
        await aggregator.get_asset_price("AAPL")
        clock.now += 3_601

        await aggregator.get_asset_price("BTC")
        await aggregator.get_asset_price("AAPL")

        assert cg.price_calls == ["BTC", "BTC"]
        assert av.price_calls == ["AAPL"]

    asyncio.run(_run())


def test_historical_exhaustion_returns_empty_list():
    async def _run() -> None:
        cg = FakeProvider("coingecko", history_types=CRYPTO, error=ProviderError("boom"))
        av = FakeProvider("alpha_vantage", history_types=frozenset(AssetType), error=ProviderError("boom"))
        aggregator = _aggregator([], history_providers=[cg, av])

        assert await aggregator.get_historical_data("BTC", 30) == []
        assert cg.history_calls == [("BTC", 30)]
        assert av.history_calls == [("BTC", 30)]

    asyncio.run(_run())


def test_historical_failover_and_caching():
    async def _run() -> None:
        cg = FakeProvider("coingecko", history_types=CRYPTO, history=[])
        av = FakeProvider("alpha_vantage", history_types=frozenset(AssetType), history=_series(10.0, 11.0))
        aggregator = _aggregator([], history_providers=[cg, av])

        first = await aggregator.get_historical_data("ETH", 7)
        second = await aggregator.get_historical_data("ETH", 7)

        assert [point.price for point in first] == [10.0, 11.0]
        assert second == first
        assert len(av.history_calls) == 1

    asyncio.run(_run())


def test_stock_history_skips_crypto_only_provider():
    async def _run() -> None:
        cg = FakeProvider("coingecko", history_types=CRYPTO, history=_series(1.0))
        av = FakeProvider("alpha_vantage", history_types=frozenset(AssetType), history=_series(180.0))
        aggregator = _aggregator([], history_providers=[cg, av])

        points = await aggregator.get_historical_data("MSFT", 7)

        assert points[0].price == 180.0
        assert cg.history_calls == []

    asyncio.run(_run())


def test_mock_mode_never_calls_providers():
    async def _run() -> None:
        cg = FakeProvider("coingecko", history_types=CRYPTO, prices={"BTC": 1.0})
        aggregator = _aggregator([cg], history_providers=[cg], config=AggregatorConfig(use_mock_data=True))

        price = await aggregator.get_asset_price("ETH")
        series = await aggregator.get_historical_data("ETH", 5)

        assert price.is_mock
        assert len(series) == 6
        assert cg.price_calls == [] and cg.history_calls == []
        assert await aggregator.get_exchange_rate("USD", "EUR") is None

    asyncio.run(_run())


def test_ohlc_and_exchange_rate_are_cached():
    async def _run() -> None:
        ohlc = FakeOhlcSource(_series(1.0, 2.0))
        fx = FakeExchangeSource(0.92)
        aggregator = _aggregator([], ohlc_provider=ohlc, exchange_rate_provider=fx)

        assert len(await aggregator.get_ohlc_data("btc", 45)) == 2
        assert len(await aggregator.get_ohlc_data("BTC", 45)) == 2
        assert ohlc.calls == [("BTC", 45)]

        rate = await aggregator.get_exchange_rate("usd", "eur")
        again = await aggregator.get_exchange_rate("USD", "EUR")
        assert rate is not None and rate.rate == 0.92
        assert again == rate
        assert fx.calls == 1

    asyncio.run(_run())


def test_exchange_rate_failure_returns_none():
    async def _run() -> None:
        aggregator = _aggregator([], exchange_rate_provider=FakeExchangeSource(None))
        assert await aggregator.get_exchange_rate("USD", "JPY") is None

    asyncio.run(_run())


def test_asset_catalog_lookup_listing_and_search():
    async def _run() -> None:
        aggregator = _aggregator([])

        btc = await aggregator.get_asset_by_symbol("btc")
        assert btc is not None and btc.name == "Bitcoin"
        assert await aggregator.get_asset_by_symbol("NOPE") is None

        second_page = await aggregator.list_available_assets(category="crypto", page=2, page_size=5)
        assert [asset.symbol for asset in second_page] == ["ADA", "DOGE"]

        metals = await aggregator.list_available_assets(category="Commodity")
        assert {asset.symbol for asset in metals} == {"XAU", "XAG", "XPT", "XPD"}

        found = await aggregator.search_assets("coin")
        assert [asset.symbol for asset in found] == ["BTC", "DOGE"]
        assert await aggregator.search_assets("   ") == []

    asyncio.run(_run())


def test_top_assets_fall_back_through_listings_then_catalog():
    async def _run() -> None:
        failing = FakeListingSource("coingecko", error=ProviderError("down"))
        listing = FakeListingSource(
            "coinmarketcap",
            assets=[MarketAsset("BTC", "Bitcoin", AssetType.CRYPTOCURRENCY), MarketAsset("ETH", "Ethereum", AssetType.CRYPTOCURRENCY)],
        )
        aggregator = _aggregator([], listing_providers=[failing, listing])
        top = await aggregator.get_top_assets(2)
        assert [asset.symbol for asset in top] == ["BTC", "ETH"]

        exhausted = _aggregator([], listing_providers=[FakeListingSource("coingecko", error=ProviderError("down"))])
        fallback = await exhausted.get_top_assets(3)
        assert [asset.symbol for asset in fallback] == ["BTC", "ETH", "SOL"]

    asyncio.run(_run())


def test_with_timeout_returns_none_when_slow():
    async def _run() -> None:
        async def slow() -> str:
            await asyncio.sleep(1)
            return "late"

        async def fast() -> str:
            return "ok"

        assert await with_timeout(slow(), 0.01) is None
        assert await with_timeout(fast(), 1) == "ok"

    asyncio.run(_run())


def test_from_settings_wires_provider_chains():
    async def _run() -> None:
        aggregator = MarketDataAggregator.from_settings(Settings(_env_file=None))

        assert list(aggregator.provider_status()) == ["coinmarketcap", "coingecko", "alpha_vantage", "metals"]
        assert not any(status["rateLimited"] for status in aggregator.provider_status().values())
        await aggregator.close()

    asyncio.run(_run())


def test_close_closes_each_provider_once():
    async def _run() -> None:
        cg = FakeProvider("coingecko", history_types=CRYPTO)
        av = FakeProvider("alpha_vantage", price_types=STOCKS)
        aggregator = _aggregator([cg, av], history_providers=[cg, av])

        await aggregator.close()

        assert cg.closed and av.closed

    asyncio.run(_run())
