from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import BaseModel, RootModel

from ..config import Settings, get_settings
from ..market_data.catalog import find_asset
from ..market_data.models import AssetPrice, AssetType, HistoricalDataPoint, MarketAsset, isoformat_utc
from ..market_data.normalization import normalize_series
from .base import MarketDataProvider, ProviderConfig, ProviderError

COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "XRP": "ripple",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "USDC": "usd-coin",
    "DOT": "polkadot",
    "MATIC": "polygon",
    "SHIB": "shiba-inu",
    "TRX": "tron",
    "AVAX": "avalanche-2",
    "UNI": "uniswap",
    "APT": "aptos",
    "LINK": "chainlink",
    "LTC": "litecoin",
    "ATOM": "cosmos",
    "XMR": "monero",
    "FIL": "filecoin",
    "ALGO": "algorand",
    "ICP": "internet-computer",
    "SUI": "sui",
    "ZEC": "zcash",
    "BCH": "bitcoin-cash",
    "XLM": "stellar",
}
SYMBOLS_BY_ID: dict[str, str] = {coin_id: symbol for symbol, coin_id in COINGECKO_IDS.items()}

VALID_OHLC_DAYS: tuple[int, ...] = (1, 7, 14, 30, 90, 180, 365)
DAILY_INTERVAL_THRESHOLD_DAYS = 90


class SimplePriceQuote(BaseModel):
    usd: float
    usd_market_cap: float | None = None
    usd_24h_vol: float | None = None
    usd_24h_change: float | None = None
    last_updated_at: int | None = None


class MarketChart(BaseModel):
    prices: list[list[float]]
    total_volumes: list[list[float]] = []


class OhlcRows(RootModel[list[list[float]]]):
    pass


class CoinMarket(BaseModel):
    id: str
    symbol: str
    name: str
    image: str | None = None
    current_price: float | None = None


def symbol_to_id(symbol: str) -> str:
    normalized = symbol.strip().upper()
    return COINGECKO_IDS.get(normalized, normalized.lower())


def id_to_symbol(coin_id: str) -> str:
    return SYMBOLS_BY_ID.get(coin_id, coin_id.upper())


def snap_ohlc_days(days: int) -> int:
    """Closest supported OHLC window; ties resolve to the smaller window."""
    return min(VALID_OHLC_DAYS, key=lambda candidate: abs(candidate - days))


class CoinGeckoProvider(MarketDataProvider):
    """CoinGecko REST adapter: spot prices, market charts, OHLC candles and top coins."""

    name = "coingecko"
    price_types = frozenset({AssetType.CRYPTOCURRENCY, AssetType.OTHER})
    history_types = frozenset({AssetType.CRYPTOCURRENCY, AssetType.OTHER})

    def __init__(self, config: ProviderConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config or self.config_from_settings(get_settings()), client=client)

    @staticmethod
    def config_from_settings(settings: Settings) -> ProviderConfig:
        return ProviderConfig(
            base_url=settings.coingecko_base_url,
            api_key=settings.coingecko_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
        )

    def _auth_headers(self) -> dict[str, str]:
        if self._config.api_key:
            return {"x-cg-pro-api-key": self._config.api_key}
        return {}

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        return await self._get_json(f"{self._config.base_url}{path}", params=params, headers=self._auth_headers())

    async def fetch_asset_price(self, symbol: str) -> AssetPrice:
        coin_id = symbol_to_id(symbol)
        payload = await self._request(
            "/simple/price",
            {
                "ids": coin_id,
                "vs_currencies": "usd",
                "include_market_cap": "true",
                "include_24hr_vol": "true",
                "include_24hr_change": "true",
                "include_last_updated_at": "true",
            },
        )
        if not isinstance(payload, dict) or coin_id not in payload:
            raise ProviderError(f"Cryptocurrency not found: {symbol}", provider=self.name)
        quote = self._parse(SimplePriceQuote, payload[coin_id])
        change_percent = quote.usd_24h_change or 0.0
        previous = quote.usd / (1 + change_percent / 100) if change_percent > -100 else quote.usd
        if quote.last_updated_at:
            last_updated = isoformat_utc(datetime.fromtimestamp(quote.last_updated_at, tz=timezone.utc))
        else:
            last_updated = isoformat_utc(datetime.now(timezone.utc))
        asset = find_asset(symbol)
        return AssetPrice(
            symbol=symbol,
            name=asset.name if asset else id_to_symbol(coin_id),
            type=AssetType.CRYPTOCURRENCY,
            price=quote.usd,
            change=quote.usd - previous,
            change_percent=change_percent,
            price_in_usd=quote.usd,
            last_updated=last_updated,
            source=self.name,
        )

    async def fetch_historical_data(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        params: dict[str, Any] = {"vs_currency": "usd", "days": days}
        if days > DAILY_INTERVAL_THRESHOLD_DAYS:
            params["interval"] = "daily"
        payload = await self._request(f"/coins/{symbol_to_id(symbol)}/market_chart", params)
        return self._chart_to_points(self._parse(MarketChart, payload))

    async def fetch_historical_range(self, symbol: str, start: datetime, end: datetime) -> list[HistoricalDataPoint]:
        if end <= start:
            raise ProviderError("Range end must be after range start", provider=self.name)
        payload = await self._request(
            f"/coins/{symbol_to_id(symbol)}/market_chart/range",
            {"vs_currency": "usd", "from": int(start.timestamp()), "to": int(end.timestamp())},
        )
        return self._chart_to_points(self._parse(MarketChart, payload))

    async def fetch_ohlc(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        valid_days = snap_ohlc_days(days)
        if valid_days != days:
            self._logger.warning("Adjusted days from %s to %s for OHLC data", days, valid_days)
        payload = await self._request(
            f"/coins/{symbol_to_id(symbol)}/ohlc",
            {"vs_currency": "usd", "days": str(valid_days)},
        )
        rows = self._parse(OhlcRows, payload).root
        return normalize_series(
            [
                {"timestamp": row[0], "open": row[1], "high": row[2], "low": row[3], "close": row[4]}
                for row in rows
                if len(row) >= 5
            ]
        )

    async def get_ohlc_data(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        try:
            return await self.fetch_ohlc(symbol, days)
        except (ProviderError, ValueError) as exc:
            self._logger.warning("coingecko OHLC lookup failed for %s: %s", symbol, exc)
            return []

    async def get_historical_range(self, symbol: str, start: datetime, end: datetime) -> list[HistoricalDataPoint]:
        try:
            return await self.fetch_historical_range(symbol, start, end)
        except (ProviderError, ValueError) as exc:
            self._logger.warning("coingecko range lookup failed for %s: %s", symbol, exc)
            return []

    async def fetch_top_assets(self, limit: int = 100, page: int = 1) -> list[MarketAsset]:
        payload = await self._request(
            "/coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": limit,
                "page": page,
                "sparkline": "false",
            },
        )
        if not isinstance(payload, list):
            raise ProviderError("Unexpected /coins/markets payload", provider=self.name)
        assets: list[MarketAsset] = []
        for item in payload:
            coin = self._parse(CoinMarket, item)
            assets.append(
                MarketAsset(
                    symbol=coin.symbol.upper(),
                    name=coin.name,
                    type=AssetType.CRYPTOCURRENCY,
                    id=coin.id,
                    description=f"{coin.name} cryptocurrency",
                    image=coin.image,
                )
            )
        return assets

    @staticmethod
    def _chart_to_points(chart: MarketChart) -> list[HistoricalDataPoint]:
        volumes = {int(row[0]): row[1] for row in chart.total_volumes if len(row) >= 2}
        return normalize_series(
            [
                {"timestamp": row[0], "price": row[1], "volume": volumes.get(int(row[0]), 0.0)}
                for row in chart.prices
                if len(row) >= 2
            ]
        )


__all__ = [
    "COINGECKO_IDS",
    "CoinGeckoProvider",
    "VALID_OHLC_DAYS",
    "id_to_symbol",
    "snap_ohlc_days",
    "symbol_to_id",
]
