"""JSON file store for cached candle series.

One pretty-printed JSON array per (symbol, interval), named
``{symbol}_{interval}_{cache_file}`` under the cache directory. Writes
replace the whole file; there is no append and no cross-process locking,
so callers must keep a single writer per key.
"""

import json
import os
from pathlib import Path

from kline_cache.config import CacheSettings
from kline_cache.exceptions import CorruptCacheError
from kline_cache.logging import get_logger
from kline_cache.models import Candle

logger = get_logger(__name__)


class JsonCacheStore:
    """Reads and writes whole candle series as JSON files.

    Usage:
        store = JsonCacheStore(settings.cache)
        series = store.read("SOLUSDT", "1h")
        store.write("SOLUSDT", "1h", series)
    """

    def __init__(self, settings: CacheSettings) -> None:
        self._settings = settings
        self._cache_dir = Path(settings.cache_dir)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @staticmethod
    def cache_key(symbol: str, interval: str) -> str:
        return f"{symbol}_{interval}_"

    def path_for(self, symbol: str, interval: str) -> Path:
        return self._cache_dir / f"{self.cache_key(symbol, interval)}{self._settings.cache_file}"

    def read(self, symbol: str, interval: str) -> list[Candle]:
        """Return the stored series, or an empty list if none exists.

        Raises CorruptCacheError if the file is not a JSON array of candle records.
        """
        path = self.path_for(symbol, interval)
        if not path.exists():
            return []

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptCacheError(f"Cache file {path} is not valid JSON: {e}") from e

        if not isinstance(document, list):
            raise CorruptCacheError(
                f"Cache file {path} must hold a JSON array, got {type(document).__name__}"
            )

        try:
            series = [Candle.from_dict(record) for record in document]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptCacheError(f"Cache file {path} has a malformed record: {e!r}") from e

        logger.debug("cache_read", path=str(path), candles=len(series))
        return series

    def write(self, symbol: str, interval: str, series: list[Candle]) -> None:
        """Replace the stored series for (symbol, interval)."""
        path = self.path_for(symbol, interval)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = json.dumps([c.to_dict() for c in series], indent=2)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug("cache_written", path=str(path), candles=len(series))
