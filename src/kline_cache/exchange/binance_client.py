"""Binance k-line source via ccxt async.

Calls the raw public ``GET /api/v3/klines`` endpoint through ccxt's implicit
API so every wire field (taker volumes included) is available, then
translates the positional rows into Candle records. Nothing past this module
ever sees a positional row.
"""

import asyncio

import ccxt.async_support as ccxt_async

from kline_cache.config import ExchangeSettings
from kline_cache.exceptions import FetchFailedError, InvalidDataError
from kline_cache.exchange.client import KlineSource
from kline_cache.logging import get_logger
from kline_cache.models import Candle, interval_to_ms, validate_candle

logger = get_logger(__name__)


def parse_kline_row(row: list) -> Candle:
    """Translate one positional wire row into a Candle.

    Row layout: [openTime, open, high, low, close, volume, closeTime,
    quoteVolume, trades, takerBuyBaseVolume, takerBuyQuoteVolume].
    Prices arrive as strings and are parsed to float.
    """
    if not isinstance(row, (list, tuple)) or len(row) < 6:
        raise InvalidDataError(f"Invalid kline data: malformed row {row!r}")

    try:
        candle = Candle(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=_field(row, 6, int),
            quote_volume=_field(row, 7, float),
            trades=_field(row, 8, int),
            taker_buy_base_volume=_field(row, 9, float),
            taker_buy_quote_volume=_field(row, 10, float),
        )
    except (TypeError, ValueError, OverflowError) as e:
        raise InvalidDataError(f"Invalid kline data: {e} in row {row!r}") from e

    validate_candle(candle)
    return candle


def _field(row, index, cast):
    if len(row) <= index or row[index] is None:
        return None
    return cast(row[index])


class BinanceKlineSource(KlineSource):
    """Concrete Binance spot k-line source using ccxt async."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._exchange = ccxt_async.binance(
            {
                "enableRateLimit": settings.enable_rate_limit,
                "timeout": settings.timeout_ms,
            }
        )

    @property
    def exchange(self) -> ccxt_async.binance:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaking the session."""
        await self._exchange.close()
        logger.debug("binance_connection_closed")

    async def fetch_page(
        self,
        symbol: str,
        interval: str,
        limit: int,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[Candle]:
        """Fetch and validate one page of candles.

        A single invalid row fails the whole page with InvalidDataError.
        """
        if not symbol:
            raise ValueError("symbol must be a non-empty trading pair")
        interval_to_ms(interval)
        if not 1 <= limit <= self._settings.max_page_size:
            raise ValueError(
                f"limit must be between 1 and {self._settings.max_page_size}, got {limit}"
            )

        params: dict = {"symbol": symbol.upper(), "interval": interval, "limit": limit}
        if start_time is not None:
            params["startTime"] = int(start_time)
        if end_time is not None:
            params["endTime"] = int(end_time)

        raw = await self._request_with_retry(params)

        if not isinstance(raw, list):
            raise InvalidDataError(
                f"Invalid kline response: expected list, got {type(raw).__name__}"
            )

        candles: list[Candle] = []
        for index, row in enumerate(raw):
            try:
                candles.append(parse_kline_row(row))
            except InvalidDataError as e:
                logger.error(
                    "invalid_kline_row",
                    symbol=params["symbol"],
                    interval=interval,
                    index=index,
                    error=str(e),
                )
                raise

        if candles:
            logger.debug(
                "fetched_klines",
                symbol=params["symbol"],
                interval=interval,
                count=len(candles),
                first_open_time=candles[0].open_time,
                last_open_time=candles[-1].open_time,
            )
        else:
            logger.debug("fetched_klines", symbol=params["symbol"], interval=interval, count=0)
        return candles

    async def _request_with_retry(self, params: dict) -> list:
        """Call the k-line endpoint, retrying on a missing body or network error.

        Retries ``page_retries`` times with a fixed delay. Exchange errors
        (bad symbol, bad parameters) are not retried.
        """
        retries = self._settings.page_retries
        last_error: Exception | None = None

        for attempt in range(retries + 1):
            if attempt > 0:
                await asyncio.sleep(self._settings.page_retry_delay)
            try:
                raw = await self._exchange.public_get_klines(params)
            except ccxt_async.NetworkError as e:
                last_error = e
                logger.warning(
                    "kline_request_retry",
                    symbol=params["symbol"],
                    attempt=attempt + 1,
                    max_attempts=retries + 1,
                    error=str(e),
                )
                continue
            except ccxt_async.BaseError as e:
                logger.error("kline_request_rejected", symbol=params["symbol"], error=str(e))
                raise FetchFailedError(f"Exchange rejected kline request: {e}") from e

            if raw is not None:
                return raw
            logger.warning(
                "kline_response_empty",
                symbol=params["symbol"],
                attempt=attempt + 1,
                max_attempts=retries + 1,
            )

        message = "Failed to fetch kline data after retries"
        if last_error is not None:
            raise FetchFailedError(f"{message}: {last_error}") from last_error
        raise FetchFailedError(message)
