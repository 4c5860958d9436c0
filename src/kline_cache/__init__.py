"""K-line cache: chunked Binance candle fetch with a local JSON series cache."""

__version__ = "0.1.0"
