"""Custom exceptions for the k-line cache pipeline.

The adapter, fetcher, store and coordinator all raise from this module,
so callers can catch KlineCacheError once at the top level.
"""


class KlineCacheError(Exception):
    """Base exception for all k-line cache errors."""


class InvalidDataError(KlineCacheError):
    """Raised when a fetched k-line record fails validation.

    The whole page is rejected; no candles from it are kept.
    """


class FetchFailedError(KlineCacheError):
    """Raised when the exchange cannot serve a page within the retry budget."""


class CorruptCacheError(KlineCacheError):
    """Raised when a stored series file cannot be parsed."""


class FetchCancelledError(KlineCacheError):
    """Raised when a chunked fetch is cancelled between chunks."""
