from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..market_data.models import AssetPrice, AssetType, HistoricalDataPoint

ModelT = TypeVar("ModelT", bound=BaseModel)


class ProviderError(RuntimeError):
    """Raised when an upstream provider fails, times out or returns an unusable payload."""

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Raised when a provider signals that the caller exceeded its request quota."""


@dataclass(slots=True)
class ProviderConfig:
    base_url: str
    api_key: str | None = None
    timeout_seconds: float = 10.0


class MarketDataProvider(ABC):
    """
    Common adapter contract.

    ``fetch_*`` methods raise ``ProviderError`` so the aggregator can decide on
    failover and demotion; ``get_*`` methods swallow those errors and signal
    failure with ``None`` or ``[]``.
    """

    name = "provider"
    price_types: frozenset[AssetType] = frozenset()
    history_types: frozenset[AssetType] = frozenset()

    def __init__(self, config: ProviderConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds),
            headers=self._default_headers(),
        )
        self._logger = logging.getLogger(f"marketdata.providers.{self.name}")

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def supports_price(self, asset_type: AssetType) -> bool:
        return asset_type in self.price_types

    def supports_history(self, asset_type: AssetType) -> bool:
        return asset_type in self.history_types

    @abstractmethod
    async def fetch_asset_price(self, symbol: str) -> AssetPrice:
        ...

    async def fetch_historical_data(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        raise ProviderError(f"{self.name} does not provide historical data", provider=self.name)

    def is_rate_limit_error(self, error: BaseException) -> bool:
        if isinstance(error, RateLimitError):
            return True
        return isinstance(error, ProviderError) and error.status_code == 429

    async def get_asset_price(self, symbol: str) -> AssetPrice | None:
        try:
            return await self.fetch_asset_price(symbol)
        except (ProviderError, ValueError) as exc:
            self._logger.warning("%s price lookup failed for %s: %s", self.name, symbol, exc)
            return None

    async def get_historical_data(self, symbol: str, days: int) -> list[HistoricalDataPoint]:
        try:
            return await self.fetch_historical_data(symbol, days)
        except (ProviderError, ValueError) as exc:
            self._logger.warning("%s historical lookup failed for %s: %s", self.name, symbol, exc)
            return []

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": "marketdata-service/0.1"}

    async def _get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.name} request timed out: {url}", provider=self.name) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} request failed: {exc}", provider=self.name) from exc
        if response.status_code == 429:
            raise RateLimitError(
                f"{self.name} rate limit exceeded", provider=self.name, status_code=response.status_code
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.name} request failed with status {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned invalid JSON", provider=self.name) from exc

    def _parse(self, model: type[ModelT], payload: Any) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise ProviderError(f"{self.name} returned an unexpected payload: {exc}", provider=self.name) from exc


__all__ = [
    "MarketDataProvider",
    "ProviderConfig",
    "ProviderError",
    "RateLimitError",
]
