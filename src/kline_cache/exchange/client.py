"""Abstract k-line source interface.

The fetcher depends only on this interface, keeping the exchange's
positional wire format and client library inside the concrete adapter.
"""

from abc import ABC, abstractmethod

from kline_cache.models import Candle


class KlineSource(ABC):
    """Abstract base class for paged k-line sources."""

    @abstractmethod
    async def fetch_page(
        self,
        symbol: str,
        interval: str,
        limit: int,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[Candle]:
        """Fetch one page of candles for ``symbol``/``interval``.

        ``start_time``/``end_time`` are inclusive epoch milliseconds.
        Returns candles in the order the exchange sent them; an empty list
        means the range has no trades.

        Pagination is NOT handled here -- ChunkedRangeFetcher advances
        the cursor between pages.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...
