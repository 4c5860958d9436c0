"""Exchange source layer -- Binance k-line API access via ccxt."""

from kline_cache.exchange.binance_client import BinanceKlineSource, parse_kline_row
from kline_cache.exchange.client import KlineSource

__all__ = ["BinanceKlineSource", "KlineSource", "parse_kline_row"]
