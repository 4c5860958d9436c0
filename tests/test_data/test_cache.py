"""Tests for the KlineCache coordinator.

Tests verify:
- A fully covering cached series is served without any fetch
- Partial coverage fetches exactly the requested range and merges it
- update() extends from the last cached open_time, or from history_years ago
- A failed fetch leaves the stored series untouched
- End to end against an in-memory exchange: first update fills the history,
  a second update with no new candle makes one request and changes nothing
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from kline_cache.config import CacheSettings
from kline_cache.data.cache import KlineCache, years_before
from kline_cache.data.fetcher import ChunkedRangeFetcher
from kline_cache.data.store import JsonCacheStore
from kline_cache.exceptions import FetchFailedError
from kline_cache.models import Candle

HOUR = 3_600_000
T0 = 1_699_999_200_000  # 2023-11-14T22:00:00Z


def _make_candle(index: int, close: float = 100.0) -> Candle:
    return Candle(
        open_time=T0 + index * HOUR,
        open=100.0,
        high=max(101.0, close),
        low=min(99.0, close),
        close=close,
        volume=2.0,
    )


def _series(*indexes: int) -> list[Candle]:
    return [_make_candle(i) for i in indexes]


@pytest.fixture
def store(cache_settings: CacheSettings) -> JsonCacheStore:
    return JsonCacheStore(cache_settings)


@pytest.fixture
def mock_fetcher() -> AsyncMock:
    fetcher = AsyncMock(spec=ChunkedRangeFetcher)
    fetcher.fetch_range = AsyncMock(return_value=[])
    return fetcher


def _make_cache(store, fetcher, settings, now: int = T0 + 10 * HOUR) -> KlineCache:
    return KlineCache(store, fetcher, settings, clock=lambda: now)


class TestYearsBefore:
    def test_calendar_years(self) -> None:
        # 2023-11-14T22:00Z -> 2014-11-14T22:00Z
        assert years_before(T0, 9) == 1_416_002_400_000

    def test_leap_day_clamps_to_feb_28(self) -> None:
        leap_day = 1_709_164_800_000  # 2024-02-29T00:00Z
        assert years_before(leap_day, 1) == 1_677_542_400_000  # 2023-02-28T00:00Z


class TestFetchWithCache:
    @pytest.mark.asyncio
    async def test_covered_range_served_from_cache(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        store.write("SOLUSDT", "1h", _series(*range(10)))
        cache = _make_cache(store, mock_fetcher, cache_settings)

        result = await cache.fetch_with_cache("SOLUSDT", T0 + 2 * HOUR, T0 + 5 * HOUR, "1h")

        assert [c.open_time for c in result] == [T0 + i * HOUR for i in range(2, 6)]
        mock_fetcher.fetch_range.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exact_bounds_are_a_hit(self, store, mock_fetcher, cache_settings) -> None:
        store.write("SOLUSDT", "1h", _series(*range(10)))
        cache = _make_cache(store, mock_fetcher, cache_settings)

        result = await cache.fetch_with_cache("SOLUSDT", T0, T0 + 9 * HOUR, "1h")

        assert len(result) == 10
        mock_fetcher.fetch_range.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_coverage_fetches_requested_range(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        store.write("SOLUSDT", "1h", _series(*range(5)))
        mock_fetcher.fetch_range = AsyncMock(return_value=_series(3, 4, 5, 6, 7))
        cache = _make_cache(store, mock_fetcher, cache_settings)

        result = await cache.fetch_with_cache("SOLUSDT", T0 + 3 * HOUR, T0 + 7 * HOUR, "1h")

        mock_fetcher.fetch_range.assert_awaited_once_with(
            "SOLUSDT", "1h", T0 + 3 * HOUR, T0 + 7 * HOUR, cancel_event=None
        )
        assert [c.open_time for c in result] == [T0 + i * HOUR for i in range(3, 8)]

    @pytest.mark.asyncio
    async def test_miss_merges_into_stored_series(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        store.write("SOLUSDT", "1h", _series(0, 1, 2))
        mock_fetcher.fetch_range = AsyncMock(return_value=_series(5, 6))
        cache = _make_cache(store, mock_fetcher, cache_settings)

        await cache.fetch_with_cache("SOLUSDT", T0 + 5 * HOUR, T0 + 6 * HOUR, "1h")

        stored = store.read("SOLUSDT", "1h")
        assert [c.open_time for c in stored] == [T0 + i * HOUR for i in (0, 1, 2, 5, 6)]

    @pytest.mark.asyncio
    async def test_empty_cache_miss_persists_fetch(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        fetched = _series(0, 1, 2)
        mock_fetcher.fetch_range = AsyncMock(return_value=fetched)
        cache = _make_cache(store, mock_fetcher, cache_settings)

        result = await cache.fetch_with_cache("SOLUSDT", T0, T0 + 2 * HOUR, "1h")

        assert result == fetched
        assert store.read("SOLUSDT", "1h") == fetched

    @pytest.mark.asyncio
    async def test_interval_defaults_to_settings(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        cache = _make_cache(store, mock_fetcher, cache_settings)
        await cache.fetch_with_cache("SOLUSDT", T0, T0 + HOUR)
        assert mock_fetcher.fetch_range.await_args.args[1] == cache_settings.interval


class TestUpdate:
    @pytest.mark.asyncio
    async def test_empty_cache_fetches_history_window(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        now = T0 + 10 * HOUR
        cache = _make_cache(store, mock_fetcher, cache_settings, now=now)

        await cache.update("SOLUSDT", "1h")

        mock_fetcher.fetch_range.assert_awaited_once_with(
            "SOLUSDT", "1h", years_before(now, 9), now, cancel_event=None
        )

    @pytest.mark.asyncio
    async def test_resumes_from_last_cached_candle(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        store.write("SOLUSDT", "1h", _series(0, 1, 2))
        mock_fetcher.fetch_range = AsyncMock(
            return_value=[_make_candle(2, close=100.8), _make_candle(3)]
        )
        now = T0 + 3 * HOUR + 5_000
        cache = _make_cache(store, mock_fetcher, cache_settings, now=now)

        merged = await cache.update("SOLUSDT", "1h")

        mock_fetcher.fetch_range.assert_awaited_once_with(
            "SOLUSDT", "1h", T0 + 2 * HOUR, now, cancel_event=None
        )
        assert [c.open_time for c in merged] == [T0 + i * HOUR for i in range(4)]
        # the refreshed last candle replaces the cached one
        assert merged[2].close == 100.8
        assert store.read("SOLUSDT", "1h") == merged

    @pytest.mark.asyncio
    async def test_failed_fetch_leaves_store_untouched(
        self, store, mock_fetcher, cache_settings
    ) -> None:
        original = _series(0, 1, 2)
        store.write("SOLUSDT", "1h", original)
        mock_fetcher.fetch_range = AsyncMock(side_effect=FetchFailedError("exchange down"))
        cache = _make_cache(store, mock_fetcher, cache_settings)

        with pytest.raises(FetchFailedError):
            await cache.update("SOLUSDT", "1h")

        assert store.read("SOLUSDT", "1h") == original

    @pytest.mark.asyncio
    async def test_read_does_not_fetch(self, store, mock_fetcher, cache_settings) -> None:
        store.write("SOLUSDT", "1h", _series(0, 1))
        cache = _make_cache(store, mock_fetcher, cache_settings)
        assert len(cache.read("SOLUSDT", "1h")) == 2
        mock_fetcher.fetch_range.assert_not_awaited()


class TestUpdateEndToEnd:
    """update() against an in-memory exchange with every hour traded."""

    @pytest.mark.asyncio
    async def test_fills_history_then_makes_one_tail_request(
        self, store, fake_source, cache_settings
    ) -> None:
        settings = cache_settings.model_copy(update={"history_years": 1})
        fetcher = ChunkedRangeFetcher(fake_source, settings)
        clock = iter([T0, T0 + 60_000])
        cache = KlineCache(store, fetcher, settings, clock=lambda: next(clock))

        first = await cache.update("SOLUSDT", "1h")

        start = years_before(T0, 1)
        assert len(first) == (T0 - start) // HOUR + 1
        assert first[0].open_time == start
        assert first[-1].open_time == T0
        assert all(call["limit"] == 1000 for call in fake_source.calls)
        assert len(fake_source.calls) == -(-len(first) // 1000)

        fake_source.calls.clear()
        second = await cache.update("SOLUSDT", "1h")

        assert len(second) == len(first)
        assert len(fake_source.calls) == 1
        assert fake_source.calls[0]["start_time"] == T0
        assert store.read("SOLUSDT", "1h") == second

    @pytest.mark.asyncio
    async def test_hit_after_update_makes_no_request(
        self, store, fake_source, cache_settings
    ) -> None:
        settings = cache_settings.model_copy(update={"history_years": 1})
        fetcher = ChunkedRangeFetcher(fake_source, settings)
        cache = KlineCache(store, fetcher, settings, clock=lambda: T0)
        await cache.update("SOLUSDT", "1h")
        fake_source.calls.clear()

        result = await cache.fetch_with_cache("SOLUSDT", T0 - 24 * HOUR, T0, "1h")

        assert len(result) == 25
        assert fake_source.calls == []


class TestConcurrentUpdates:
    """Two updates on one key run one after the other, not interleaved."""

    @pytest.mark.asyncio
    async def test_second_update_resumes_from_first_tail(
        self, store, fake_source_factory, cache_settings
    ) -> None:
        class SlowSource(fake_source_factory):
            async def fetch_page(self, *args, **kwargs):
                await asyncio.sleep(0.001)
                return await super().fetch_page(*args, **kwargs)

        settings = cache_settings.model_copy(update={"history_years": 1})
        fetcher = ChunkedRangeFetcher(SlowSource(), settings)
        fetcher.fetch_range = AsyncMock(wraps=fetcher.fetch_range)
        clock = iter([T0, T0 + 2 * HOUR + 60_000])
        cache = KlineCache(store, fetcher, settings, clock=lambda: next(clock))

        first, second = await asyncio.gather(
            cache.update("SOLUSDT", "1h"),
            cache.update("SOLUSDT", "1h"),
        )

        first_call, second_call = fetcher.fetch_range.await_args_list
        assert first_call.args[2] == years_before(T0, 1)
        # second update saw the first one's persisted tail
        assert second_call.args[2] == T0
        assert len(second) == len(first) + 2
        assert {c.open_time for c in first} <= {c.open_time for c in second}
        assert store.read("SOLUSDT", "1h") == second
