from datetime import datetime, timezone

from marketdata_service.market_data.models import AssetPrice, AssetType, HistoricalDataPoint, parse_datetime
from marketdata_service.market_data.normalization import (
    coerce_float,
    normalize_historical_data_point,
    normalize_series,
)


def test_price_only_record_fills_ohlc_from_price():
    point = normalize_historical_data_point({"timestamp": 1_700_000_000_000, "price": 42.5})

    assert point.timestamp == 1_700_000_000_000
    assert point.date == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    assert point.open == point.high == point.low == point.close == 42.5
    assert point.value == 42.5
    assert point.volume == 0.0


def test_close_only_record_uses_close_as_price():
    point = normalize_historical_data_point({"date": "2024-01-15", "close": 10.0, "high": 11.0})

    assert point.price == 10.0
    assert point.close == 10.0
    assert point.high == 11.0
    assert point.low == 10.0
    assert point.timestamp == int(datetime(2024, 1, 15, tzinfo=timezone.utc).timestamp() * 1000)


def test_time_field_is_used_when_timestamp_missing():
    point = normalize_historical_data_point({"time": 86_400_000, "value": 3})

    assert point.timestamp == 86_400_000
    assert point.price == 3.0


def test_pair_rows_are_accepted():
    point = normalize_historical_data_point([1_600_000_000_000, 12.0])

    assert point.timestamp == 1_600_000_000_000
    assert point.price == 12.0


def test_missing_timestamp_falls_back_to_epoch():
    point = normalize_historical_data_point({"price": "not-a-number"})

    assert point.timestamp == 0
    assert point.date == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert point.price == 0.0


def test_garbage_input_never_raises():
    assert normalize_historical_data_point(None).timestamp == 0
    assert normalize_historical_data_point("junk").price == 0.0
    assert normalize_historical_data_point([]).price == 0.0


def test_normalize_series_sorts_by_timestamp():
    points = normalize_series(
        [
            {"timestamp": 3000, "price": 3},
            {"timestamp": 1000, "price": 1},
            {"timestamp": 2000, "price": 2},
        ]
    )

    assert [point.timestamp for point in points] == [1000, 2000, 3000]
    assert normalize_series(None) == []


def test_coerce_float_skips_non_finite_values():
    assert coerce_float(None, "nan", float("inf"), "7.5") == 7.5
    assert coerce_float(True, "abc") is None


def test_historical_point_dict_uses_iso_date():
    point = normalize_historical_data_point({"timestamp": 0, "price": 1})
    payload = point.to_dict()

    assert payload["date"] == "1970-01-01T00:00:00Z"
    assert HistoricalDataPoint.from_dict(payload) == point


def test_asset_price_rejects_negative_price_and_bad_timestamp():
    try:
        AssetPrice(symbol="btc", name="Bitcoin", type=AssetType.CRYPTOCURRENCY, price=-1)
    except ValueError:
        pass
    else:  # pragma: no cover - assertion path
        raise AssertionError("negative price accepted")

    try:
        AssetPrice(symbol="btc", name="Bitcoin", type=AssetType.CRYPTOCURRENCY, price=1, last_updated="yesterday")
    except ValueError:
        pass
    else:  # pragma: no cover - assertion path
        raise AssertionError("invalid lastUpdated accepted")


def test_asset_price_defaults_and_camel_case_payload():
    price = AssetPrice(symbol="eth", name="Ethereum", type=AssetType.CRYPTOCURRENCY, price=3000.0)
    payload = price.to_dict()

    assert price.symbol == "ETH"
    assert payload["priceInUSD"] == 3000.0
    assert payload["type"] == "Cryptocurrency"
    assert parse_datetime(payload["lastUpdated"]) is not None
    assert AssetPrice.from_dict(payload) == price


def test_asset_type_parse_aliases():
    assert AssetType.parse("crypto") is AssetType.CRYPTOCURRENCY
    assert AssetType.parse("Stocks") is AssetType.STOCKS
    assert AssetType.parse("precious metal") is AssetType.COMMODITY
    assert AssetType.parse("index") is AssetType.INDICES
    assert AssetType.parse("bonds") is AssetType.OTHER
