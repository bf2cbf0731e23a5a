from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MARKETDATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    service_name: str = "marketdata-service"
    service_port: int = 8090
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    log_dir: str | None = "logs"

    use_mock_data: bool = False

    coingecko_api_key: str | None = None
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coinmarketcap_api_key: str | None = None
    coinmarketcap_base_url: str = "https://pro-api.coinmarketcap.com/v1"
    alpha_vantage_api_key: str | None = None
    alpha_vantage_base_url: str = "https://www.alphavantage.co/query"
    alpha_vantage_min_interval_seconds: float = 15.0
    # Longest spacing wait a request accepts before failing over
    alpha_vantage_max_wait_seconds: float = 4.0
    metals_api_key: str | None = None
    metals_base_url: str = "https://api.metalpriceapi.com/v1"
    metals_auth_param: str = "access_key"

    provider_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 15.0
    # Any failure of the spot price primary demotes it, not only explicit rate-limit signals
    demote_on_any_failure: bool = True

    price_ttl_seconds: int = 3600
    historical_ttl_seconds: int = 3600
    exchange_rate_ttl_seconds: int = 21_600
    stock_ttl_seconds: int = 21_600
    metals_ttl_seconds: int = 21_600
    asset_ttl_seconds: int = 3600

    cache_backend: Literal["redis", "memory", "file"] = "memory"
    cache_single_flight: bool = False
    redis_url: str | None = None
    file_cache_dir: str = ".cache/marketdata"
    file_cache_max_bytes: int = 500 * 1024 * 1024
    file_cache_max_age_seconds: float = 7 * 24 * 60 * 60

    rate_limit_max_requests: int = 20
    rate_limit_window_seconds: float = 60.0

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:5173",
        ]
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
