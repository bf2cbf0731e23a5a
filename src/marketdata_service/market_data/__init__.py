from .catalog import PREDEFINED_ASSETS, classify_symbol, filter_assets, find_asset, paginate
from .mock import MockDataGenerator
from .models import AssetPrice, AssetType, ExchangeRate, HistoricalDataPoint, MarketAsset
from .normalization import normalize_historical_data_point, normalize_series

__all__ = [
    "AssetPrice",
    "AssetType",
    "ExchangeRate",
    "HistoricalDataPoint",
    "MarketAsset",
    "MockDataGenerator",
    "PREDEFINED_ASSETS",
    "classify_symbol",
    "filter_assets",
    "find_asset",
    "normalize_historical_data_point",
    "normalize_series",
    "paginate",
]
