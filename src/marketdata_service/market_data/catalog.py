from __future__ import annotations

from typing import Iterable

from .models import AssetType, MarketAsset

PREDEFINED_ASSETS: tuple[MarketAsset, ...] = (
    MarketAsset("BTC", "Bitcoin", AssetType.CRYPTOCURRENCY, id="bitcoin"),
    MarketAsset("ETH", "Ethereum", AssetType.CRYPTOCURRENCY, id="ethereum"),
    MarketAsset("SOL", "Solana", AssetType.CRYPTOCURRENCY, id="solana"),
    MarketAsset("BNB", "BNB", AssetType.CRYPTOCURRENCY, id="binancecoin"),
    MarketAsset("XRP", "XRP", AssetType.CRYPTOCURRENCY, id="ripple"),
    MarketAsset("ADA", "Cardano", AssetType.CRYPTOCURRENCY, id="cardano"),
    MarketAsset("DOGE", "Dogecoin", AssetType.CRYPTOCURRENCY, id="dogecoin"),
    MarketAsset("AAPL", "Apple Inc.", AssetType.STOCKS, id="apple"),
    MarketAsset("GOOGL", "Alphabet Inc.", AssetType.STOCKS, id="alphabet"),
    MarketAsset("MSFT", "Microsoft Corporation", AssetType.STOCKS, id="microsoft"),
    MarketAsset("AMZN", "Amazon.com Inc.", AssetType.STOCKS, id="amazon"),
    MarketAsset("TSLA", "Tesla Inc.", AssetType.STOCKS, id="tesla"),
    MarketAsset("XAU", "Gold", AssetType.COMMODITY, id="gold"),
    MarketAsset("XAG", "Silver", AssetType.COMMODITY, id="silver"),
    MarketAsset("XPT", "Platinum", AssetType.COMMODITY, id="platinum"),
    MarketAsset("XPD", "Palladium", AssetType.COMMODITY, id="palladium"),
    MarketAsset("SPX", "S&P 500", AssetType.INDICES, description="US large-cap stocks"),
    MarketAsset("DJI", "Dow Jones Industrial Average", AssetType.INDICES, description="US blue-chip stocks"),
    MarketAsset("IXIC", "NASDAQ Composite", AssetType.INDICES, description="US technology stocks"),
)

METAL_SYMBOLS: tuple[str, ...] = ("XAU", "XAG", "XPT", "XPD")

CRYPTO_SYMBOLS = frozenset(
    {
        "BTC", "ETH", "USDT", "BNB", "SOL", "USDC", "XRP", "ADA", "DOGE", "DOT",
        "MATIC", "SHIB", "TRX", "AVAX", "UNI", "APT", "LINK", "LTC", "ATOM",
        "XMR", "FIL", "ALGO", "ICP", "SUI", "ZEC", "BCH", "XLM",
    }
)

STOCK_SYMBOLS = frozenset({"AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "META", "NVDA", "JPM", "V", "JNJ"})


def find_asset(symbol: str, assets: Iterable[MarketAsset] = PREDEFINED_ASSETS) -> MarketAsset | None:
    needle = symbol.strip().lower()
    for asset in assets:
        if asset.symbol.lower() == needle:
            return asset
    return None


def classify_symbol(symbol: str) -> AssetType:
    asset = find_asset(symbol)
    if asset is not None:
        return asset.type
    normalized = symbol.split(":")[0].strip().upper()
    if normalized in CRYPTO_SYMBOLS:
        return AssetType.CRYPTOCURRENCY
    if normalized in METAL_SYMBOLS:
        return AssetType.COMMODITY
    if normalized in STOCK_SYMBOLS:
        return AssetType.STOCKS
    return AssetType.OTHER


def filter_assets(
    assets: Iterable[MarketAsset],
    *,
    category: str | None = None,
    keywords: str | None = None,
) -> list[MarketAsset]:
    results = list(assets)
    if category:
        wanted = AssetType.parse(category)
        results = [asset for asset in results if asset.type is wanted]
    if keywords:
        needle = keywords.lower()
        results = [
            asset
            for asset in results
            if needle in asset.symbol.lower() or (asset.name and needle in asset.name.lower())
        ]
    return results


def paginate(items: list[MarketAsset], page: int = 1, page_size: int = 20) -> list[MarketAsset]:
    page = max(page, 1)
    page_size = max(page_size, 0)
    start = (page - 1) * page_size
    return items[start : start + page_size]


__all__ = [
    "CRYPTO_SYMBOLS",
    "METAL_SYMBOLS",
    "PREDEFINED_ASSETS",
    "STOCK_SYMBOLS",
    "classify_symbol",
    "filter_assets",
    "find_asset",
    "paginate",
]
