from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Callable

from .catalog import classify_symbol, find_asset
from .models import AssetPrice, HistoricalDataPoint, isoformat_utc

BASE_PRICES: dict[str, float] = {
    "BTC": 50_000.0,
    "ETH": 3_000.0,
    "BNB": 500.0,
    "SOL": 150.0,
    "XRP": 1.20,
    "ADA": 2.50,
    "DOGE": 0.15,
    "DOT": 20.0,
    "MATIC": 1.50,
    "AVAX": 35.0,
    "AAPL": 175.0,
    "MSFT": 350.0,
    "GOOGL": 2_800.0,
    "AMZN": 3_500.0,
    "TSLA": 250.0,
    "META": 480.0,
    "NVDA": 880.0,
    "JPM": 180.0,
    "V": 270.0,
    "JNJ": 155.0,
    "XAU": 2_000.0,
    "XAG": 25.0,
    "XPT": 950.0,
    "XPD": 1_200.0,
    "CL": 85.0,
    "NG": 3.50,
}
DEFAULT_BASE_PRICE = 100.0

BASE_VOLUMES: dict[str, float] = {"BTC": 1e9, "ETH": 5e8}
DEFAULT_BASE_VOLUME = 1e5

SPOT_DRIFT_PCT = 1.0
DAILY_DRIFT = 0.005
INTRADAY_SPREAD = 0.001


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MockDataGenerator:
    """
    Synthetic market data used when every provider is exhausted or mock mode is forced.

    Base prices are fixed per symbol; the random source only adds bounded drift so
    repeated calls look plausible without being identical.
    """

    def __init__(
        self,
        *,
        rng: random.Random | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._now = now_fn or _utcnow
        self._logger = logging.getLogger("marketdata.mock")

    def base_price(self, symbol: str) -> float:
        return BASE_PRICES.get(symbol.upper(), DEFAULT_BASE_PRICE)

    def generate_mock_price(self, symbol: str) -> AssetPrice:
        normalized = str(symbol or "").strip().upper() or "UNKNOWN"
        base = self.base_price(normalized)
        change_percent = self._rng.uniform(-SPOT_DRIFT_PCT, SPOT_DRIFT_PCT)
        price = base * (1 + change_percent / 100)
        asset = find_asset(normalized)
        self._logger.debug("Generated mock price for %s: %.4f", normalized, price)
        return AssetPrice(
            symbol=normalized,
            name=asset.name if asset else normalized,
            type=classify_symbol(normalized),
            price=price,
            change=price - base,
            change_percent=change_percent,
            price_in_usd=price,
            price_in_btc=price / BASE_PRICES["BTC"],
            last_updated=isoformat_utc(self._now()),
            source="mock",
        )

    def generate_mock_historical_series(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        normalized = str(symbol or "").strip().upper() or "UNKNOWN"
        try:
            days = max(int(days), 0)
        except (TypeError, ValueError):
            days = 0
        base_volume = BASE_VOLUMES.get(normalized, DEFAULT_BASE_VOLUME)
        today = self._now().replace(hour=0, minute=0, second=0, microsecond=0)
        previous_close = self.base_price(normalized)
        points: list[HistoricalDataPoint] = []
        for offset in range(days, -1, -1):
            date = today - timedelta(days=offset)
            open_price = previous_close
            close_price = open_price * (1 + self._rng.uniform(-DAILY_DRIFT, DAILY_DRIFT))
            high = max(open_price, close_price) * (1 + self._rng.uniform(0, INTRADAY_SPREAD))
            low = min(open_price, close_price) * (1 - self._rng.uniform(0, INTRADAY_SPREAD))
            points.append(
                HistoricalDataPoint(
                    timestamp=int(date.timestamp() * 1000),
                    date=date,
                    price=close_price,
                    value=close_price,
                    open=open_price,
                    high=high,
                    low=low,
                    close=close_price,
                    volume=base_volume * self._rng.uniform(0.8, 1.2),
                )
            )
            previous_close = close_price
        return points


__all__ = ["BASE_PRICES", "DEFAULT_BASE_PRICE", "MockDataGenerator"]
