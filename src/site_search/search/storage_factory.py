"""Storage factory for choosing between the memory, file and SQLite backends."""

from collections.abc import Sequence
from pathlib import Path

from site_search.config import Settings
from site_search.search.sqlite_storage import MEMORY_DATABASE, SqliteStorage
from site_search.search.storage import FileStorage, MemoryStorage, Storage


STORAGE_BACKENDS = ("memory", "file", "sqlite")


def create_storage(
    backend: str = "memory",
    path: str | Path | None = None,
    *,
    table_prefix: str = "",
    stopwords: Sequence[str] | None = None,
    exclusion_ratio: float = 0.3,
    exclusion_min_docs: int = 20,
) -> Storage:
    """Create a storage backend.

    The file backend loads an existing snapshot right away; an absent snapshot
    leaves it uninitialized until ``erase()``.
    """
    if backend == "memory":
        return MemoryStorage(stopwords=stopwords, exclusion_ratio=exclusion_ratio, exclusion_min_docs=exclusion_min_docs)
    if backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unknown storage backend '{backend}'. Available: {list(STORAGE_BACKENDS)}")
    if not path:
        raise ValueError(f"The '{backend}' storage backend needs a path")

    if backend == "file":
        storage = FileStorage(
            path, stopwords=stopwords, exclusion_ratio=exclusion_ratio, exclusion_min_docs=exclusion_min_docs
        )
        storage.load()
        return storage

    if str(path) != MEMORY_DATABASE:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    return SqliteStorage(
        path,
        table_prefix=table_prefix,
        stopwords=stopwords,
        exclusion_ratio=exclusion_ratio,
        exclusion_min_docs=exclusion_min_docs,
    )


def create_storage_from_settings(settings: Settings) -> Storage:
    """Create the backend described by ``SITE_SEARCH_STORAGE_*`` settings."""
    return create_storage(
        settings.storage_backend,
        settings.storage_path or None,
        table_prefix=settings.table_prefix,
        stopwords=settings.get_stopwords(),
        exclusion_ratio=settings.exclusion_ratio,
        exclusion_min_docs=settings.exclusion_min_docs,
    )
