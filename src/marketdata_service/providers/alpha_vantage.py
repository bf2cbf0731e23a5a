from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings, get_settings
from ..market_data.catalog import classify_symbol, find_asset
from ..market_data.models import (
    AssetPrice,
    AssetType,
    ExchangeRate,
    HistoricalDataPoint,
    isoformat_utc,
    parse_datetime,
)
from ..market_data.normalization import coerce_float, normalize_series
from .base import MarketDataProvider, ProviderConfig, ProviderError, RateLimitError

RATE_LIMIT_MARKERS = ("api call frequency", "rate limit")
FULL_OUTPUT_THRESHOLD_DAYS = 100


class GlobalQuote(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str = Field(alias="01. symbol")
    price: float = Field(alias="05. price")
    volume: float | None = Field(default=None, alias="06. volume")
    latest_trading_day: str | None = Field(default=None, alias="07. latest trading day")
    change: float = Field(default=0.0, alias="09. change")
    change_percent: str = Field(default="0%", alias="10. change percent")


class GlobalQuoteResponse(BaseModel):
    quote: dict[str, Any] = Field(default_factory=dict, alias="Global Quote")


class DailySeriesResponse(BaseModel):
    series: dict[str, dict[str, str]] = Field(alias="Time Series (Daily)")


class DigitalCurrencyDailyResponse(BaseModel):
    series: dict[str, dict[str, str]] = Field(alias="Time Series (Digital Currency Daily)")


class FxDailyResponse(BaseModel):
    series: dict[str, dict[str, str]] = Field(alias="Time Series FX (Daily)")


class ExchangeRatePayload(BaseModel):
    from_code: str = Field(alias="1. From_Currency Code")
    to_code: str = Field(alias="3. To_Currency Code")
    rate: float = Field(alias="5. Exchange Rate")
    last_refreshed: str | None = Field(default=None, alias="6. Last Refreshed")


class ExchangeRateResponse(BaseModel):
    rate: ExchangeRatePayload = Field(alias="Realtime Currency Exchange Rate")


def _field(values: Mapping[str, str], *names: str) -> float | None:
    return coerce_float(*(values.get(name) for name in names))


def _latest_days(series: Mapping[str, Mapping[str, str]], days: int) -> list[tuple[str, Mapping[str, str]]]:
    ordered = sorted(series.items(), key=lambda item: item[0], reverse=True)
    return ordered[: max(days, 1)]


class AlphaVantageProvider(MarketDataProvider):
    """
    Alpha Vantage adapter for stock quotes, daily series, crypto dailies and FX rates.

    The free tier throttles aggressively, so consecutive requests are spaced by
    ``min_interval_seconds``. A request that would have to wait longer than
    ``max_wait_seconds`` fails immediately so callers can fall back. Throttling
    is reported inside a 200 response as a ``Note``/``Information`` message
    rather than an HTTP status.
    """

    name = "alpha_vantage"
    price_types = frozenset({AssetType.STOCKS, AssetType.INDICES, AssetType.OTHER})
    history_types = frozenset({AssetType.STOCKS, AssetType.INDICES, AssetType.CRYPTOCURRENCY, AssetType.OTHER})

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        min_interval_seconds: float | None = None,
        max_wait_seconds: float | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(config or self.config_from_settings(settings), client=client)
        if min_interval_seconds is None:
            min_interval_seconds = settings.alpha_vantage_min_interval_seconds
        self._min_interval_seconds = min_interval_seconds
        if max_wait_seconds is None:
            max_wait_seconds = settings.alpha_vantage_max_wait_seconds
        self._max_wait_seconds = max_wait_seconds
        self._sleep = sleep_fn or asyncio.sleep
        self._clock = clock or time.monotonic
        self._last_request_at: float | None = None
        self._throttle_lock = asyncio.Lock()

    @staticmethod
    def config_from_settings(settings: Settings) -> ProviderConfig:
        return ProviderConfig(
            base_url=settings.alpha_vantage_base_url,
            api_key=settings.alpha_vantage_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
        )

    def is_rate_limit_error(self, error: BaseException) -> bool:
        if super().is_rate_limit_error(error):
            return True
        message = str(error).lower()
        return any(marker in message for marker in RATE_LIMIT_MARKERS)

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        if not self._config.api_key:
            raise ProviderError("Alpha Vantage API key is not configured", provider=self.name)
        async with self._throttle_lock:
            if self._last_request_at is not None:
                wait_for = self._min_interval_seconds - (self._clock() - self._last_request_at)
                if wait_for > self._max_wait_seconds:
                    raise ProviderError(
                        f"Alpha Vantage request spacing needs {wait_for:.1f}s more; not waiting",
                        provider=self.name,
                    )
                if wait_for > 0:
                    self._logger.debug("Spacing Alpha Vantage request by %.2fs", wait_for)
                    await self._sleep(wait_for)
            try:
                payload = await self._get_json(self._config.base_url, params={**params, "apikey": self._config.api_key})
            finally:
                self._last_request_at = self._clock()
        if not isinstance(payload, dict):
            raise ProviderError("Alpha Vantage returned a non-object payload", provider=self.name)
        for key in ("Note", "Information"):
            note = payload.get(key)
            if isinstance(note, str) and any(marker in note.lower() for marker in RATE_LIMIT_MARKERS):
                raise RateLimitError(f"Alpha Vantage rate limit: {note}", provider=self.name)
        if "Error Message" in payload:
            raise ProviderError(f"Alpha Vantage error: {payload['Error Message']}", provider=self.name)
        return payload

    async def fetch_asset_price(self, symbol: str) -> AssetPrice:
        payload = self._parse(GlobalQuoteResponse, await self._request({"function": "GLOBAL_QUOTE", "symbol": symbol}))
        if not payload.quote:
            raise ProviderError(f"No quote returned for {symbol}", provider=self.name)
        quote = self._parse(GlobalQuote, payload.quote)
        change_percent = coerce_float(quote.change_percent.replace("%", "").strip()) or 0.0
        updated = parse_datetime(quote.latest_trading_day) or datetime.now(timezone.utc)
        asset = find_asset(quote.symbol)
        asset_type = classify_symbol(quote.symbol)
        return AssetPrice(
            symbol=quote.symbol,
            name=asset.name if asset else quote.symbol.upper(),
            type=asset_type if asset_type is not AssetType.OTHER else AssetType.STOCKS,
            price=quote.price,
            change=quote.change,
            change_percent=change_percent,
            price_in_usd=quote.price,
            last_updated=isoformat_utc(updated),
            source=self.name,
        )

    async def fetch_historical_data(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        if classify_symbol(symbol) is AssetType.CRYPTOCURRENCY:
            return await self.fetch_crypto_daily(symbol, days)
        payload = await self._request(
            {
                "function": "TIME_SERIES_DAILY",
                "symbol": symbol,
                "outputsize": "full" if days > FULL_OUTPUT_THRESHOLD_DAYS else "compact",
            }
        )
        series = self._parse(DailySeriesResponse, payload).series
        return normalize_series(
            [
                {
                    "date": date,
                    "open": _field(values, "1. open"),
                    "high": _field(values, "2. high"),
                    "low": _field(values, "3. low"),
                    "close": _field(values, "4. close"),
                    "volume": _field(values, "5. volume"),
                }
                for date, values in _latest_days(series, days)
            ]
        )

    async def fetch_crypto_daily(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        payload = await self._request({"function": "DIGITAL_CURRENCY_DAILY", "symbol": symbol, "market": "USD"})
        series = self._parse(DigitalCurrencyDailyResponse, payload).series
        return normalize_series(
            [
                {
                    "date": date,
                    "open": _field(values, "1a. open (USD)", "1. open"),
                    "high": _field(values, "2a. high (USD)", "2. high"),
                    "low": _field(values, "3a. low (USD)", "3. low"),
                    "close": _field(values, "4a. close (USD)", "4. close"),
                    "volume": _field(values, "5. volume"),
                }
                for date, values in _latest_days(series, days)
            ]
        )

    async def fetch_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        payload = await self._request(
            {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": from_currency,
                "to_currency": to_currency,
            }
        )
        rate = self._parse(ExchangeRateResponse, payload).rate
        refreshed = parse_datetime(rate.last_refreshed)
        return ExchangeRate(
            from_currency=rate.from_code.upper(),
            to_currency=rate.to_code.upper(),
            rate=rate.rate,
            last_refreshed=isoformat_utc(refreshed) if refreshed else (rate.last_refreshed or ""),
            source=self.name,
        )

    async def fetch_fx_daily(self, from_currency: str, to_currency: str, days: int) -> list[HistoricalDataPoint]:
        payload = await self._request(
            {
                "function": "FX_DAILY",
                "from_symbol": from_currency,
                "to_symbol": to_currency,
                "outputsize": "full" if days > FULL_OUTPUT_THRESHOLD_DAYS else "compact",
            }
        )
        series = self._parse(FxDailyResponse, payload).series
        return normalize_series(
            [
                {
                    "date": date,
                    "open": _field(values, "1. open"),
                    "high": _field(values, "2. high"),
                    "low": _field(values, "3. low"),
                    "close": _field(values, "4. close"),
                }
                for date, values in _latest_days(series, days)
            ]
        )

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        try:
            return await self.fetch_exchange_rate(from_currency, to_currency)
        except (ProviderError, ValueError) as exc:
            self._logger.warning("alpha_vantage exchange rate lookup failed for %s/%s: %s", from_currency, to_currency, exc)
            return None


__all__ = ["AlphaVantageProvider"]
