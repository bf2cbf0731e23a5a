from __future__ import annotations

from datetime import datetime, timezone

import httpx
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..market_data.catalog import METAL_SYMBOLS
from ..market_data.models import AssetPrice, AssetType, isoformat_utc
from .base import MarketDataProvider, ProviderConfig, ProviderError

METAL_NAMES: dict[str, str] = {
    "XAU": "Gold",
    "XAG": "Silver",
    "XPT": "Platinum",
    "XPD": "Palladium",
}


class MetalsLatestResponse(BaseModel):
    success: bool = False
    base: str | None = None
    timestamp: int | None = None
    rates: dict[str, float] = {}


class MetalsProvider(MarketDataProvider):
    """Precious metal spot prices from the metals price API (USD base)."""

    name = "metals"
    price_types = frozenset({AssetType.COMMODITY})

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        auth_param: str | None = None,
    ) -> None:
        settings = get_settings()
        super().__init__(config or self.config_from_settings(settings), client=client)
        self._auth_param = auth_param or settings.metals_auth_param

    @staticmethod
    def config_from_settings(settings: Settings) -> ProviderConfig:
        return ProviderConfig(
            base_url=settings.metals_base_url,
            api_key=settings.metals_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
        )

    async def fetch_latest_rates(self) -> MetalsLatestResponse:
        if not self._config.api_key:
            raise ProviderError("Metals API key is not configured", provider=self.name)
        payload = await self._get_json(
            f"{self._config.base_url}/latest",
            params={
                self._auth_param: self._config.api_key,
                "base": "USD",
                "currencies": ",".join(METAL_SYMBOLS),
            },
        )
        latest = self._parse(MetalsLatestResponse, payload)
        if not latest.success or not latest.rates:
            raise ProviderError("Metals API returned an unsuccessful response", provider=self.name)
        return latest

    async def fetch_asset_price(self, symbol: str) -> AssetPrice:
        normalized = symbol.strip().upper()
        if normalized not in METAL_SYMBOLS:
            raise ProviderError(f"Unsupported metal symbol: {symbol}", provider=self.name)
        latest = await self.fetch_latest_rates()
        price = latest.rates.get(f"USD{normalized}")
        if price is None:
            # USD-based quotes are metal units per dollar; invert them
            per_dollar = latest.rates.get(normalized)
            if not per_dollar:
                raise ProviderError(f"Rate for {normalized} not found in response", provider=self.name)
            price = 1 / per_dollar
        if latest.timestamp:
            updated = datetime.fromtimestamp(latest.timestamp, tz=timezone.utc)
        else:
            updated = datetime.now(timezone.utc)
        return AssetPrice(
            symbol=normalized,
            name=METAL_NAMES.get(normalized, normalized),
            type=AssetType.COMMODITY,
            price=price,
            change=0.0,
            change_percent=0.0,
            price_in_usd=price,
            last_updated=isoformat_utc(updated),
            source=self.name,
        )


__all__ = ["METAL_NAMES", "MetalsProvider"]
