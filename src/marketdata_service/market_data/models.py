from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


def _now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings, plain dates, epoch millis or datetimes into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class AssetType(str, Enum):
    CRYPTOCURRENCY = "Cryptocurrency"
    STOCKS = "Stocks"
    COMMODITY = "Commodity"
    INDICES = "Indices"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "AssetType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        aliases = {
            "crypto": cls.CRYPTOCURRENCY,
            "stock": cls.STOCKS,
            "commodities": cls.COMMODITY,
            "precious metal": cls.COMMODITY,
            "metal": cls.COMMODITY,
            "index": cls.INDICES,
        }
        for member in cls:
            if member.value.lower() == text:
                return member
        return aliases.get(text, cls.OTHER)


@dataclass(slots=True)
class AssetPrice:
    symbol: str
    name: str
    type: AssetType
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    price_in_usd: float | None = None
    price_in_btc: float = 0.0
    last_updated: str = field(default_factory=lambda: isoformat_utc(_now()))
    source: str = "unknown"

    def __post_init__(self) -> None:
        self.symbol = self.symbol.upper()
        if self.price < 0:
            raise ValueError(f"price must be non-negative for {self.symbol}")
        if self.price_in_usd is None:
            self.price_in_usd = self.price
        if parse_datetime(self.last_updated) is None:
            raise ValueError(f"lastUpdated is not a valid timestamp: {self.last_updated!r}")

    @property
    def is_mock(self) -> bool:
        return self.source == "mock"

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.type.value,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "priceInUSD": self.price_in_usd,
            "priceInBTC": self.price_in_btc,
            "lastUpdated": self.last_updated,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AssetPrice":
        price_in_usd = payload.get("priceInUSD")
        return cls(
            symbol=str(payload["symbol"]),
            name=str(payload.get("name") or payload["symbol"]),
            type=AssetType.parse(payload.get("type")),
            price=float(payload["price"]),
            change=float(payload.get("change") or 0.0),
            change_percent=float(payload.get("changePercent") or 0.0),
            price_in_usd=float(price_in_usd) if price_in_usd is not None else None,
            price_in_btc=float(payload.get("priceInBTC") or 0.0),
            last_updated=str(payload.get("lastUpdated") or isoformat_utc(_now())),
            source=str(payload.get("source") or "unknown"),
        )


@dataclass(slots=True)
class HistoricalDataPoint:
    timestamp: int
    date: datetime
    price: float
    value: float
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "date": isoformat_utc(self.date),
            "price": self.price,
            "value": self.value,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "HistoricalDataPoint":
        timestamp = int(payload["timestamp"])
        date = parse_datetime(payload.get("date")) or datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
        return cls(
            timestamp=timestamp,
            date=date,
            price=float(payload["price"]),
            value=float(payload["value"]),
            open=float(payload["open"]),
            high=float(payload["high"]),
            low=float(payload["low"]),
            close=float(payload["close"]),
            volume=float(payload.get("volume") or 0.0),
        )


@dataclass(slots=True)
class MarketAsset:
    symbol: str
    name: str
    type: AssetType
    id: str | None = None
    description: str | None = None
    image: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.type.value,
        }
        if self.id is not None:
            payload["id"] = self.id
        if self.description is not None:
            payload["description"] = self.description
        if self.image is not None:
            payload["image"] = self.image
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MarketAsset":
        return cls(
            symbol=str(payload["symbol"]).upper(),
            name=str(payload.get("name") or payload["symbol"]),
            type=AssetType.parse(payload.get("type")),
            id=payload.get("id"),
            description=payload.get("description"),
            image=payload.get("image"),
        )


@dataclass(slots=True)
class ExchangeRate:
    from_currency: str
    to_currency: str
    rate: float
    last_refreshed: str
    source: str = "alpha_vantage"

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromCurrency": self.from_currency,
            "toCurrency": self.to_currency,
            "rate": self.rate,
            "lastRefreshed": self.last_refreshed,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ExchangeRate":
        return cls(
            from_currency=str(payload["fromCurrency"]),
            to_currency=str(payload["toCurrency"]),
            rate=float(payload["rate"]),
            last_refreshed=str(payload.get("lastRefreshed") or ""),
            source=str(payload.get("source") or "alpha_vantage"),
        )
