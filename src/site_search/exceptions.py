"""Exception hierarchy shared by the search engine and bundled storages."""

from __future__ import annotations


class SearchError(Exception):
    """Base class for every error raised by site-search."""


class StorageError(SearchError):
    """Raised when a storage backend fails (I/O, connectivity, corrupted data).

    Bundled backends chain the original exception; the engine never retries
    and lets this propagate to the caller.
    """


class UninitializedStorageError(SearchError):
    """Raised when writing to storage that has not been bootstrapped.

    Retry with auto-erase enabled or provision the storage with ``erase()``.
    """

    def __init__(self, message: str = "Storage is empty or not initialized; enable auto-erase or call erase()") -> None:
        super().__init__(message)
