from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from .models import HistoricalDataPoint, parse_datetime

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def coerce_float(*values: Any) -> float | None:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return number
    return None


def _coerce_timestamp(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    number = coerce_float(value)
    if number is not None:
        return int(number)
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return int(parsed.timestamp() * 1000)


def normalize_historical_data_point(raw: Mapping[str, Any] | Sequence[Any] | None) -> HistoricalDataPoint:
    """
    Convert a partial provider record into a fully populated HistoricalDataPoint.

    Accepts mappings (``timestamp``/``time``/``date`` plus any of ``price``,
    ``value``, ``open``, ``high``, ``low``, ``close``, ``volume``) or
    ``[timestamp, price]`` pairs as returned by chart endpoints. Missing OHLC
    fields default to the price, volume defaults to 0. Never raises.
    """

    if isinstance(raw, Mapping):
        record: Mapping[str, Any] = raw
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        record = {
            "timestamp": raw[0] if len(raw) > 0 else None,
            "price": raw[1] if len(raw) > 1 else None,
        }
    else:
        record = {}

    timestamp = _coerce_timestamp(record.get("timestamp"))
    if timestamp is None:
        timestamp = _coerce_timestamp(record.get("time"))
    date = parse_datetime(record.get("date"))

    if timestamp is None and date is not None:
        timestamp = int(date.timestamp() * 1000)
    if timestamp is None:
        timestamp = 0
    if date is None:
        date = parse_datetime(timestamp) or _EPOCH

    price = coerce_float(record.get("price"), record.get("close"), record.get("value"))
    if price is None:
        price = 0.0
    close = coerce_float(record.get("close"), price)
    return HistoricalDataPoint(
        timestamp=timestamp,
        date=date,
        price=price,
        value=coerce_float(record.get("value"), price) or 0.0,
        open=coerce_float(record.get("open"), price) or 0.0,
        high=coerce_float(record.get("high"), price) or 0.0,
        low=coerce_float(record.get("low"), price) or 0.0,
        close=close if close is not None else price,
        volume=coerce_float(record.get("volume")) or 0.0,
    )


def normalize_series(rows: Sequence[Mapping[str, Any] | Sequence[Any]] | None) -> list[HistoricalDataPoint]:
    if not rows:
        return []
    points = [normalize_historical_data_point(row) for row in rows]
    points.sort(key=lambda point: point.timestamp)
    return points


__all__ = ["coerce_float", "normalize_historical_data_point", "normalize_series"]
