"""Pure helpers over candle series: ordering, de-duplication, merge, slicing.

A series is a list of Candle with strictly increasing ``open_time``.
"""

from kline_cache.models import Candle


def sort_candles(candles: list[Candle]) -> list[Candle]:
    """Return candles sorted ascending by open_time (stable)."""
    return sorted(candles, key=lambda c: c.open_time)


def remove_duplicates(candles: list[Candle]) -> list[Candle]:
    """Keep one candle per open_time; the last occurrence wins.

    Result keeps the first-seen position of each key, like a dict insert.
    """
    by_time: dict[int, Candle] = {}
    for candle in candles:
        by_time[candle.open_time] = candle
    return list(by_time.values())


def merge_series(existing: list[Candle], new: list[Candle]) -> list[Candle]:
    """Merge two series; on an open_time collision the candle from ``new`` wins."""
    return sort_candles(remove_duplicates([*existing, *new]))


def slice_series(series: list[Candle], start_time: int, end_time: int) -> list[Candle]:
    """Return candles with start_time <= open_time <= end_time."""
    return [c for c in series if start_time <= c.open_time <= end_time]


def covers(series: list[Candle], start_time: int, end_time: int) -> bool:
    """True if the series spans [start_time, end_time] by its first/last open_time."""
    if not series:
        return False
    return series[0].open_time <= start_time and end_time <= series[-1].open_time
