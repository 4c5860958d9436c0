"""Cache coordinator: serve from the local series or fetch, merge and persist.

Two operations:
- fetch_with_cache: cache hit when the stored series spans the request
  (no network); otherwise fetch exactly the requested range, merge it into
  the stored series and persist.
- update: extend the stored series from its last open_time (or from
  ``history_years`` ago when empty) up to now.

Persistence happens only after a successful fetch, so a failed operation
leaves the stored series as it was.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

from kline_cache.config import CacheSettings
from kline_cache.data.fetcher import ChunkedRangeFetcher
from kline_cache.data.series import covers, merge_series, slice_series
from kline_cache.data.store import JsonCacheStore
from kline_cache.logging import get_logger
from kline_cache.models import Candle

logger = get_logger(__name__)


def utc_now_ms() -> int:
    return int(time.time() * 1000)


def years_before(timestamp_ms: int, years: int) -> int:
    """Shift an epoch-ms timestamp back by calendar years (Feb 29 -> Feb 28)."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    try:
        shifted = moment.replace(year=moment.year - years)
    except ValueError:
        shifted = moment.replace(year=moment.year - years, day=28)
    return int(shifted.timestamp() * 1000)


class KlineCache:
    """Coordinates the JSON store and the chunked fetcher per (symbol, interval).

    Construct once per process and pass it to whoever needs candles.
    Operations on the same key are serialized within this instance; separate
    processes writing the same key are not coordinated.

    Usage:
        cache = KlineCache(store, fetcher, settings.cache)
        candles = await cache.fetch_with_cache("SOLUSDT", start_ms, end_ms, "1h")
        candles = await cache.update("SOLUSDT", "1h")
    """

    def __init__(
        self,
        store: JsonCacheStore,
        fetcher: ChunkedRangeFetcher,
        settings: CacheSettings,
        clock: Callable[[], int] = utc_now_ms,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._settings = settings
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, symbol: str, interval: str) -> asyncio.Lock:
        key = self._store.cache_key(symbol, interval)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def fetch_with_cache(
        self,
        symbol: str,
        start_time: int,
        end_time: int,
        interval: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Candle]:
        """Return candles with open_time in [start_time, end_time].

        On a miss the fetched candles are merged into the stored series
        rather than replacing it, so earlier cached candles outside the
        requested window survive.
        """
        interval = interval or self._settings.interval

        async with self._lock_for(symbol, interval):
            cached = self._store.read(symbol, interval)

            if covers(cached, start_time, end_time):
                result = slice_series(cached, start_time, end_time)
                logger.info(
                    "cache_hit",
                    symbol=symbol,
                    interval=interval,
                    candles=len(result),
                )
                return result

            logger.info(
                "cache_miss",
                symbol=symbol,
                interval=interval,
                cached=len(cached),
                start_time=start_time,
                end_time=end_time,
            )
            fetched = await self._fetcher.fetch_range(
                symbol, interval, start_time, end_time, cancel_event=cancel_event
            )
            merged = merge_series(cached, fetched)
            self._store.write(symbol, interval, merged)
            logger.info(
                "cache_saved",
                symbol=symbol,
                interval=interval,
                fetched=len(fetched),
                stored=len(merged),
            )
            return fetched

    async def update(
        self,
        symbol: str,
        interval: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Candle]:
        """Extend the stored series up to now and return the merged series."""
        interval = interval or self._settings.interval

        async with self._lock_for(symbol, interval):
            cached = self._store.read(symbol, interval)
            end_time = self._clock()
            if cached:
                start_time = cached[-1].open_time
            else:
                start_time = years_before(end_time, self._settings.history_years)

            logger.info(
                "cache_update_started",
                symbol=symbol,
                interval=interval,
                cached=len(cached),
                start_time=start_time,
                end_time=end_time,
            )
            fetched = await self._fetcher.fetch_range(
                symbol, interval, start_time, end_time, cancel_event=cancel_event
            )
            merged = merge_series(cached, fetched)
            self._store.write(symbol, interval, merged)
            logger.info(
                "cache_updated",
                symbol=symbol,
                interval=interval,
                added=len(merged) - len(cached),
                stored=len(merged),
            )
            return merged

    def read(self, symbol: str, interval: str | None = None) -> list[Candle]:
        """Return the stored series without touching the network."""
        return self._store.read(symbol, interval or self._settings.interval)
