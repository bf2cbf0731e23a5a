from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..market_data.models import AssetPrice, AssetType, MarketAsset, isoformat_utc, parse_datetime
from .base import MarketDataProvider, ProviderConfig, ProviderError

CMC_IDS: dict[str, str] = {
    "BTC": "1",
    "ETH": "1027",
    "USDT": "825",
    "BNB": "1839",
    "SOL": "5426",
    "USDC": "3408",
    "XRP": "52",
    "ADA": "2010",
    "DOGE": "74",
}
SYMBOLS_BY_CMC_ID: dict[str, str] = {cmc_id: symbol for symbol, cmc_id in CMC_IDS.items()}

RATE_LIMIT_ERROR_CODES = frozenset({1008, 1009, 1010, 1011})


class CmcUsdQuote(BaseModel):
    price: float | None = None
    percent_change_24h: float | None = None
    last_updated: str | None = None


class CmcAsset(BaseModel):
    id: int
    name: str
    symbol: str
    quote: dict[str, CmcUsdQuote]


class CmcStatus(BaseModel):
    error_code: int = 0
    error_message: str | None = None


class CmcQuotesResponse(BaseModel):
    status: CmcStatus | None = None
    data: dict[str, CmcAsset] = {}


class CmcListingsResponse(BaseModel):
    status: CmcStatus | None = None
    data: list[CmcAsset] = []


def symbol_to_cmc_id(symbol: str) -> str | None:
    return CMC_IDS.get(symbol.strip().upper())


def cmc_id_to_symbol(cmc_id: str) -> str:
    return SYMBOLS_BY_CMC_ID.get(str(cmc_id), str(cmc_id).upper())


class CoinMarketCapProvider(MarketDataProvider):
    """CoinMarketCap pro API adapter; quotes and listings, USD converted."""

    name = "coinmarketcap"
    price_types = frozenset({AssetType.CRYPTOCURRENCY, AssetType.OTHER})

    def __init__(self, config: ProviderConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config or self.config_from_settings(get_settings()), client=client)

    @staticmethod
    def config_from_settings(settings: Settings) -> ProviderConfig:
        return ProviderConfig(
            base_url=settings.coinmarketcap_base_url,
            api_key=settings.coinmarketcap_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
        )

    def is_rate_limit_error(self, error: BaseException) -> bool:
        if super().is_rate_limit_error(error):
            return True
        return "rate limit" in str(error).lower()

    async def _request(self, path: str, params: dict[str, Any]) -> Any:
        if not self._config.api_key:
            raise ProviderError("CoinMarketCap API key is not configured", provider=self.name)
        return await self._get_json(
            f"{self._config.base_url}{path}",
            params=params,
            headers={"X-CMC_PRO_API_KEY": self._config.api_key},
        )

    def _check_status(self, status: CmcStatus | None) -> None:
        if status is None or status.error_code == 0:
            return
        message = status.error_message or f"error code {status.error_code}"
        if status.error_code in RATE_LIMIT_ERROR_CODES:
            raise ProviderError(f"CoinMarketCap rate limit: {message}", provider=self.name, status_code=429)
        raise ProviderError(f"CoinMarketCap error: {message}", provider=self.name)

    async def fetch_asset_price(self, symbol: str) -> AssetPrice:
        if not symbol or not symbol.strip():
            raise ProviderError("Invalid asset symbol", provider=self.name)
        cmc_id = symbol_to_cmc_id(symbol)
        if cmc_id is not None:
            lookup_key = cmc_id
            params = {"id": cmc_id, "convert": "USD"}
        else:
            lookup_key = symbol.strip().upper()
            params = {"symbol": lookup_key, "convert": "USD"}

        payload = self._parse(CmcQuotesResponse, await self._request("/cryptocurrency/quotes/latest", params))
        self._check_status(payload.status)
        entry = payload.data.get(lookup_key)
        if entry is None:
            raise ProviderError(f"No price data found for asset: {symbol}", provider=self.name)
        quote = entry.quote.get("USD")
        if quote is None or not quote.price:
            raise ProviderError(f"Invalid price data for asset: {symbol}", provider=self.name)

        change_percent = quote.percent_change_24h or 0.0
        previous = quote.price / (1 + change_percent / 100) if change_percent > -100 else quote.price
        updated = parse_datetime(quote.last_updated)
        return AssetPrice(
            symbol=cmc_id_to_symbol(cmc_id) if cmc_id else entry.symbol,
            name=entry.name,
            type=AssetType.CRYPTOCURRENCY,
            price=quote.price,
            change=quote.price - previous,
            change_percent=change_percent,
            price_in_usd=quote.price,
            # not provided by CoinMarketCap; filled in by the aggregator when needed
            price_in_btc=0.0,
            last_updated=isoformat_utc(updated or datetime.now(timezone.utc)),
            source=self.name,
        )

    async def fetch_top_assets(self, limit: int = 100, start: int = 1) -> list[MarketAsset]:
        payload = self._parse(
            CmcListingsResponse,
            await self._request(
                "/cryptocurrency/listings/latest",
                {"start": start, "limit": limit, "convert": "USD"},
            ),
        )
        self._check_status(payload.status)
        return [
            MarketAsset(
                symbol=entry.symbol.upper(),
                name=entry.name,
                type=AssetType.CRYPTOCURRENCY,
                id=str(entry.id),
                description=f"{entry.name} cryptocurrency",
            )
            for entry in payload.data
        ]


__all__ = ["CMC_IDS", "CoinMarketCapProvider", "cmc_id_to_symbol", "symbol_to_cmc_id"]
