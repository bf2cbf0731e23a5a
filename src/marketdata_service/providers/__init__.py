from .alpha_vantage import AlphaVantageProvider
from .base import MarketDataProvider, ProviderConfig, ProviderError, RateLimitError
from .coingecko import CoinGeckoProvider, VALID_OHLC_DAYS, snap_ohlc_days
from .coinmarketcap import CoinMarketCapProvider
from .metals import MetalsProvider

__all__ = [
    "AlphaVantageProvider",
    "CoinGeckoProvider",
    "CoinMarketCapProvider",
    "MarketDataProvider",
    "MetalsProvider",
    "ProviderConfig",
    "ProviderError",
    "RateLimitError",
    "VALID_OHLC_DAYS",
    "snap_ohlc_days",
]
