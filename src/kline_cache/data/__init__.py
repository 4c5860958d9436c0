"""Candle series persistence and fetch pipeline.

Provides series helpers, the JSON file store, the chunked range fetcher,
and the cache coordinator that ties them together.
"""

from kline_cache.data.cache import KlineCache
from kline_cache.data.fetcher import ChunkedRangeFetcher
from kline_cache.data.series import merge_series, remove_duplicates, sort_candles
from kline_cache.data.store import JsonCacheStore

__all__ = [
    "ChunkedRangeFetcher",
    "JsonCacheStore",
    "KlineCache",
    "merge_series",
    "remove_duplicates",
    "sort_candles",
]
