"""Command-line entry point for the k-line cache.

Commands:
- init [BASE] [INTERVAL]: fetch ``history_years`` of candles through the cache
- update [BASE] [INTERVAL]: extend the cached series up to now
- show [BASE] [INTERVAL]: summarize the cached series (no network)

BASE is the base asset (e.g. SOL); the configured quote asset is appended.
Exits 1 on any k-line cache error.
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import Any

from kline_cache.config import AppSettings
from kline_cache.data.cache import KlineCache, utc_now_ms, years_before
from kline_cache.data.fetcher import ChunkedRangeFetcher
from kline_cache.data.store import JsonCacheStore
from kline_cache.exceptions import KlineCacheError
from kline_cache.exchange.binance_client import BinanceKlineSource
from kline_cache.logging import get_logger, setup_logging
from kline_cache.models import INTERVALS, Candle


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kline-cache",
        description="Fetch and cache Binance k-line data as local JSON series",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("init", "fetch the full history window into the cache"),
        ("update", "extend the cached series up to now"),
        ("show", "print a summary of the cached series"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("base", nargs="?", help="base asset, e.g. SOL (default: configured symbol)")
        sub.add_argument("interval", nargs="?", choices=INTERVALS, help="k-line interval")

    return parser.parse_args(argv)


def resolve_symbol(base: str | None, settings: AppSettings) -> str:
    """Turn a base asset into a trading pair by appending the quote asset."""
    if not base:
        return settings.cache.default_symbol
    quote = settings.cache.quote_asset.upper()
    base = base.strip().upper()
    if base.endswith(quote) and base != quote:
        return base
    return f"{base}{quote}"


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def summarize(candles: list[Candle]) -> dict[str, Any]:
    summary: dict[str, Any] = {"count": len(candles)}
    if candles:
        summary["first"] = _format_ms(candles[0].open_time)
        summary["last"] = _format_ms(candles[-1].open_time)
    return summary


def _print_summary(action: str, symbol: str, interval: str, candles: list[Candle]) -> None:
    summary = summarize(candles)
    print(f"[{symbol} - {interval}] {action} {summary['count']} klines")
    if candles:
        print(f"  First kline: {summary['first']}")
        print(f"  Last kline:  {summary['last']}")


async def run(args: argparse.Namespace, settings: AppSettings) -> None:
    """Build the cache components and execute one command."""
    logger = get_logger("kline_cache.main")
    symbol = resolve_symbol(args.base, settings)
    interval = args.interval or settings.cache.interval

    store = JsonCacheStore(settings.cache)

    if args.command == "show":
        candles = store.read(symbol, interval)
        _print_summary("cached", symbol, interval, candles)
        return

    source = BinanceKlineSource(settings.exchange)
    fetcher = ChunkedRangeFetcher(source, settings.cache)
    cache = KlineCache(store, fetcher, settings.cache)

    try:
        if args.command == "init":
            end_time = utc_now_ms()
            start_time = years_before(end_time, settings.cache.history_years)
            logger.info(
                "initializing_cache",
                symbol=symbol,
                interval=interval,
                start=_format_ms(start_time),
                end=_format_ms(end_time),
            )
            candles = await cache.fetch_with_cache(symbol, start_time, end_time, interval)
            _print_summary("cached", symbol, interval, candles)
        else:
            logger.info("updating_cache", symbol=symbol, interval=interval)
            candles = await cache.update(symbol, interval)
            _print_summary("updated cache with", symbol, interval, candles)
    finally:
        await source.close()


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point."""
    args = parse_args(argv)
    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("kline_cache.main")

    try:
        asyncio.run(run(args, settings))
    except KlineCacheError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
