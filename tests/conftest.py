"""Shared test fixtures for the k-line cache."""

import pytest

from kline_cache.config import AppSettings, CacheSettings, ExchangeSettings
from kline_cache.exchange.client import KlineSource
from kline_cache.models import Candle, interval_to_ms


class FakeKlineSource(KlineSource):
    """In-memory exchange: every aligned bucket in [start, end] has a candle.

    Open times are multiples of the interval width, like Binance. Buckets
    listed in ``gaps`` have no trades. Every call is recorded.
    """

    def __init__(self, gaps: set[int] | None = None) -> None:
        self.calls: list[dict] = []
        self.gaps = gaps or set()
        self.closed = False

    async def fetch_page(
        self,
        symbol: str,
        interval: str,
        limit: int,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[Candle]:
        self.calls.append(
            {
                "symbol": symbol,
                "interval": interval,
                "limit": limit,
                "start_time": start_time,
                "end_time": end_time,
            }
        )
        step = interval_to_ms(interval)
        open_time = -(-start_time // step) * step  # first bucket >= start_time
        page: list[Candle] = []
        while open_time <= end_time and len(page) < limit:
            if open_time not in self.gaps:
                page.append(
                    Candle(
                        open_time=open_time,
                        open=100.0,
                        high=101.0,
                        low=99.0,
                        close=100.5,
                        volume=10.0,
                        close_time=open_time + step - 1,
                    )
                )
            open_time += step
        return page

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def cache_settings(tmp_path) -> CacheSettings:
    """CacheSettings writing under tmp_path with all delays disabled."""
    return CacheSettings(
        cache_dir=str(tmp_path / "cache"),
        interval="1h",
        rate_limit_delay=0,
        retry_delay=0,
        retry_max_delay=0,
        chunk_max_retries=2,
    )


@pytest.fixture
def exchange_settings() -> ExchangeSettings:
    """ExchangeSettings with no delay between page retries."""
    return ExchangeSettings(page_retry_delay=0)


@pytest.fixture
def app_settings(
    cache_settings: CacheSettings, exchange_settings: ExchangeSettings
) -> AppSettings:
    return AppSettings(
        log_level="DEBUG",
        exchange=exchange_settings,
        cache=cache_settings,
    )


@pytest.fixture
def fake_source() -> FakeKlineSource:
    return FakeKlineSource()


@pytest.fixture
def fake_source_factory() -> type[FakeKlineSource]:
    """The FakeKlineSource class, for tests that need gaps."""
    return FakeKlineSource
