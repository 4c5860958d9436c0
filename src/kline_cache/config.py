"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ExchangeSettings(BaseSettings):
    """Binance public k-line endpoint settings."""

    model_config = SettingsConfigDict(env_prefix="BINANCE_")

    timeout_ms: int = 30_000
    enable_rate_limit: bool = True
    max_page_size: int = 1000  # spot /api/v3/klines hard limit
    page_retries: int = 3  # retries on empty body or network error
    page_retry_delay: float = 1.0  # seconds, fixed between page retries


class CacheSettings(BaseSettings):
    """K-line cache and chunked fetch configuration.

    Controls where series files live, how wide each chunk request is,
    and how the fetcher paces and retries chunk requests.
    All fields configurable via KLINE_CACHE_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="KLINE_CACHE_")

    cache_dir: str = "./cache"
    cache_file: str = "klines_cache.json"
    chunk_size: int = 1000  # candles per chunk request
    interval: str = "15m"
    default_symbol: str = "SOLUSDT"
    quote_asset: str = "USDT"
    history_years: int = 9

    rate_limit_delay: float = 0.1  # seconds between successful chunks
    retry_delay: float = 1.0  # base delay for chunk retry backoff
    retry_max_delay: float = 30.0  # backoff ceiling
    chunk_max_retries: int = 5


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    exchange: ExchangeSettings = ExchangeSettings()
    cache: CacheSettings = CacheSettings()
