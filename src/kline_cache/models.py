"""Data models for k-line candles and supported intervals.

Prices and volumes are floats, parsed once from the exchange's string
fields. Open/close times are integer epoch milliseconds.
"""

import math
from dataclasses import dataclass
from typing import Any

import ccxt

from kline_cache.exceptions import InvalidDataError

# Binance k-line intervals with a fixed bucket width. "1M" is excluded since
# a calendar month has no constant width to advance a cursor by.
INTERVALS: tuple[str, ...] = (
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w",
)

REQUIRED_FIELDS: tuple[str, ...] = ("open_time", "open", "high", "low", "close", "volume")

# Persisted record keys, in wire order
_FIELD_KEYS: dict[str, str] = {
    "open_time": "openTime",
    "open": "open",
    "high": "high",
    "low": "low",
    "close": "close",
    "volume": "volume",
    "close_time": "closeTime",
    "quote_volume": "quoteVolume",
    "trades": "trades",
    "taker_buy_base_volume": "takerBuyBaseVolume",
    "taker_buy_quote_volume": "takerBuyQuoteVolume",
}


def interval_to_ms(interval: str) -> int:
    """Return the bucket width of a k-line interval in milliseconds."""
    if interval not in INTERVALS:
        raise ValueError(
            f"Unsupported interval {interval!r}, expected one of {', '.join(INTERVALS)}"
        )
    return int(ccxt.Exchange.parse_timeframe(interval)) * 1000


@dataclass
class Candle:
    """A single OHLCV bar.

    ``open_time`` is the series key. The optional fields come straight from
    the exchange and are carried through untouched.
    """

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int | None = None
    quote_volume: float | None = None
    trades: int | None = None
    taker_buy_base_volume: float | None = None
    taker_buy_quote_volume: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase record stored in cache files."""
        record: dict[str, Any] = {}
        for attr, key in _FIELD_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                record[key] = value
        return record

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> "Candle":
        """Build a Candle from a stored record.

        Raises KeyError if a required key is missing and TypeError/ValueError
        if a value is not numeric.
        """
        values = {attr: record.get(key) for attr, key in _FIELD_KEYS.items()}
        for attr in REQUIRED_FIELDS:
            if values[attr] is None:
                raise KeyError(_FIELD_KEYS[attr])
        return cls(
            open_time=int(values["open_time"]),
            open=float(values["open"]),
            high=float(values["high"]),
            low=float(values["low"]),
            close=float(values["close"]),
            volume=float(values["volume"]),
            close_time=_opt(int, values["close_time"]),
            quote_volume=_opt(float, values["quote_volume"]),
            trades=_opt(int, values["trades"]),
            taker_buy_base_volume=_opt(float, values["taker_buy_base_volume"]),
            taker_buy_quote_volume=_opt(float, values["taker_buy_quote_volume"]),
        )


def _opt(cast, value):
    return None if value is None else cast(value)


def validate_candle(candle: Candle) -> None:
    """Raise InvalidDataError unless every required field is a finite number."""
    for attr in REQUIRED_FIELDS:
        value = getattr(candle, attr)
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidDataError(f"Invalid kline data: {attr} is missing or not numeric")
        if not math.isfinite(value):
            raise InvalidDataError(f"Invalid kline data: {attr} is not finite ({value})")
