"""Chunked range fetch with rate-limit pacing and bounded retry.

Walks FORWARD from start_time to end_time one page-sized chunk at a time,
strictly sequentially. Handles trading gaps (empty pages), exponential
backoff retry of a failed chunk, and cooperative cancellation between chunks.

Implementation notes:
- Chunk width is chunk_size * interval width; the limit sent is chunk_size.
- After a non-empty page the cursor moves to last.open_time + interval, so
  the next chunk never re-requests the last candle.
- Chunk retries are capped (chunk_max_retries) with a backoff ceiling
  (retry_max_delay). A chunk that still fails raises FetchFailedError.
"""

import asyncio

from kline_cache.config import CacheSettings
from kline_cache.data.series import remove_duplicates, sort_candles
from kline_cache.exceptions import FetchCancelledError, FetchFailedError
from kline_cache.exchange.client import KlineSource
from kline_cache.logging import get_logger
from kline_cache.models import Candle, interval_to_ms

logger = get_logger(__name__)


class ChunkedRangeFetcher:
    """Fetches a time range wider than one page from a KlineSource.

    Usage:
        fetcher = ChunkedRangeFetcher(source, settings.cache)
        candles = await fetcher.fetch_range("SOLUSDT", "1h", start_ms, end_ms)
    """

    def __init__(self, source: KlineSource, settings: CacheSettings) -> None:
        self._source = source
        self._settings = settings

    async def fetch_range(
        self,
        symbol: str,
        interval: str,
        start_time: int,
        end_time: int,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Candle]:
        """Fetch [start_time, end_time] and return a sorted, de-duplicated series.

        Returns an empty list without any request when start_time >= end_time.
        Raises FetchCancelledError if ``cancel_event`` is set between chunks.
        """
        if start_time >= end_time:
            return []

        step_ms = interval_to_ms(interval)
        chunk_size = self._settings.chunk_size
        chunk_width = chunk_size * step_ms

        collected: list[Candle] = []
        cursor = start_time
        chunks = 0

        while cursor < end_time:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    "range_fetch_cancelled",
                    symbol=symbol,
                    interval=interval,
                    cursor=cursor,
                    fetched=len(collected),
                )
                raise FetchCancelledError(
                    f"Fetch of {symbol} {interval} cancelled at {cursor}"
                )

            chunk_end = min(cursor + chunk_width, end_time)
            page = await self._fetch_chunk_with_retry(
                symbol, interval, chunk_size, cursor, chunk_end
            )
            chunks += 1

            if not page:
                # No trades in this window: skip a whole chunk
                cursor += chunk_width
                logger.debug("empty_chunk_skipped", symbol=symbol, next_cursor=cursor)
                continue

            collected.extend(page)
            cursor = page[-1].open_time + step_ms

            await asyncio.sleep(self._settings.rate_limit_delay)

        result = sort_candles(remove_duplicates(collected))
        logger.info(
            "range_fetch_complete",
            symbol=symbol,
            interval=interval,
            chunks=chunks,
            candles=len(result),
        )
        return result

    async def _fetch_chunk_with_retry(
        self,
        symbol: str,
        interval: str,
        limit: int,
        start_time: int,
        end_time: int,
    ) -> list[Candle]:
        """Fetch one chunk, retrying FetchFailedError with capped exponential backoff.

        Delays: retry_delay * 2**attempt, never above retry_max_delay.
        InvalidDataError is not retried. Re-raises on final failure.
        """
        max_retries = self._settings.chunk_max_retries

        for attempt in range(max_retries + 1):
            try:
                return await self._source.fetch_page(
                    symbol, interval, limit, start_time=start_time, end_time=end_time
                )
            except FetchFailedError as e:
                if attempt == max_retries:
                    logger.error(
                        "chunk_fetch_failed_permanently",
                        symbol=symbol,
                        start_time=start_time,
                        attempts=max_retries + 1,
                        error=str(e),
                    )
                    raise

                delay = min(
                    self._settings.retry_delay * (2**attempt),
                    self._settings.retry_max_delay,
                )
                logger.warning(
                    "chunk_fetch_retry",
                    symbol=symbol,
                    start_time=start_time,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        # Only reached when chunk_max_retries < 0 leaves no attempt at all
        raise FetchFailedError(
            f"No fetch attempt made for {symbol} chunk at {start_time} "
            f"(chunk_max_retries={max_retries})"
        )
