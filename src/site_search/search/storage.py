"""Storage contract for the search engine plus in-process reference backends.

The engine talks to persistence only through the protocols below:

* ``StorageReader`` - postings, exclusions, keyword phrases and TOC lookups
  used by the finder.
* ``StorageWriter`` - the indexer's write side, including the initialization
  check and the ``transaction()`` write boundary.
* ``Reloadable`` - optional capability of snapshot storages.

``MemoryStorage`` keeps everything in lock-protected dictionaries with a
reverse index per identity so removal only touches the affected terms.
Every identity gets a sequence number when it is first written and reads
return documents in that order; an identity removed and written again inside
one transaction keeps its number, so re-indexing does not reorder ties.
``FileStorage`` persists a ``MemoryStorage`` snapshot as a single JSON file.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
import logging
from pathlib import Path
import threading
from typing import Any, Protocol, runtime_checkable

import orjson

from site_search.exceptions import StorageError
from site_search.search.analyzers import fold_case
from site_search.search.models import DocumentIdentity, Posting, TocEntry, normalize_phrase


logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1


class StorageReader(Protocol):
    """Read side used by the finder and result sets."""

    def get_postings(self, word: str) -> list[Posting]:  # pragma: no cover - interface definition
        ...

    def is_excluded(self, word: str) -> bool:  # pragma: no cover - interface definition
        ...

    def get_single_keyword_index(self, word: str) -> list[DocumentIdentity]:  # pragma: no cover
        ...

    def get_multiple_keyword_index(self, phrase: str) -> list[DocumentIdentity]:  # pragma: no cover
        ...

    def get_toc_entry(self, identity: DocumentIdentity) -> TocEntry | None:  # pragma: no cover
        ...

    def get_toc_size(self) -> int:  # pragma: no cover - interface definition
        ...

    def find_toc_by_title(self, text: str) -> list[TocEntry]:  # pragma: no cover - interface definition
        ...


class StorageWriter(Protocol):
    """Write side used by the indexer."""

    def add_postings(
        self, identity: DocumentIdentity, postings: Mapping[str, Sequence[Posting]]
    ) -> None:  # pragma: no cover - interface definition
        ...

    def add_keyword_phrases(
        self, identity: DocumentIdentity, phrases: Sequence[str]
    ) -> None:  # pragma: no cover - interface definition
        ...

    def add_toc_entry(self, entry: TocEntry) -> None:  # pragma: no cover - interface definition
        ...

    def remove_by_identity(self, identity: DocumentIdentity) -> None:  # pragma: no cover
        ...

    def erase(self) -> None:  # pragma: no cover - interface definition
        ...

    def is_initialized(self) -> bool:  # pragma: no cover - interface definition
        ...

    def transaction(self) -> Any:  # pragma: no cover - interface definition
        ...


class Storage(StorageReader, StorageWriter, Protocol):
    """A backend implementing both sides of the contract."""


@runtime_checkable
class Reloadable(Protocol):
    """Snapshot storages that must re-read their backing file to see other writers."""

    def reload(self) -> None:  # pragma: no cover - interface definition
        ...


class MemoryStorage:
    """Process-local storage backed by dictionaries.

    Readers and writers share one re-entrant lock, so a ``transaction()``
    (delete-then-insert of one document) is never observed half-applied.
    """

    def __init__(
        self,
        *,
        stopwords: Sequence[str] | None = None,
        exclusion_ratio: float = 0.3,
        exclusion_min_docs: int = 20,
    ) -> None:
        self._lock = threading.RLock()
        self._stopwords = frozenset(fold_case(word) for word in stopwords or ())
        self.exclusion_ratio = exclusion_ratio
        self.exclusion_min_docs = exclusion_min_docs
        self._initialized = True
        self._transaction_depth = 0
        self._reset()

    def _reset(self) -> None:
        self._fulltext: dict[str, dict[DocumentIdentity, list[Posting]]] = {}
        self._keywords: dict[str, dict[DocumentIdentity, None]] = {}
        self._toc: dict[DocumentIdentity, TocEntry] = {}
        self._excluded: set[str] = set()
        self._words_by_identity: dict[DocumentIdentity, set[str]] = {}
        self._phrases_by_identity: dict[DocumentIdentity, set[str]] = {}
        self._sequence: dict[DocumentIdentity, int] = {}
        self._next_sequence = 0
        self._released: set[DocumentIdentity] = set()

    def _assign_sequence(self, identity: DocumentIdentity) -> None:
        if identity not in self._sequence:
            self._sequence[identity] = self._next_sequence
            self._next_sequence += 1

    def _in_document_order(self, identities: Iterable[DocumentIdentity]) -> list[DocumentIdentity]:
        return sorted(identities, key=self._sequence.__getitem__)

    def _forget_released(self) -> None:
        for identity in self._released:
            if not (
                identity in self._toc or identity in self._words_by_identity or identity in self._phrases_by_identity
            ):
                self._sequence.pop(identity, None)
        self._released.clear()

    # -- read side ---------------------------------------------------------

    def get_postings(self, word: str) -> list[Posting]:
        with self._lock:
            by_identity = self._fulltext.get(word)
            if not by_identity:
                return []
            return [posting for identity in self._in_document_order(by_identity) for posting in by_identity[identity]]

    def is_excluded(self, word: str) -> bool:
        folded = fold_case(word)
        with self._lock:
            return folded in self._stopwords or folded in self._excluded

    def get_single_keyword_index(self, word: str) -> list[DocumentIdentity]:
        phrase = normalize_phrase(word)
        if not phrase or " " in phrase:
            return []
        with self._lock:
            return self._in_document_order(self._keywords.get(phrase, ()))

    def get_multiple_keyword_index(self, phrase: str) -> list[DocumentIdentity]:
        normalized = normalize_phrase(phrase)
        if " " not in normalized:
            return []
        with self._lock:
            return self._in_document_order(self._keywords.get(normalized, ()))

    def get_toc_entry(self, identity: DocumentIdentity) -> TocEntry | None:
        with self._lock:
            return self._toc.get(identity)

    def get_toc_size(self) -> int:
        with self._lock:
            return len(self._toc)

    def find_toc_by_title(self, text: str) -> list[TocEntry]:
        needle = fold_case(text.strip())
        if not needle:
            return []
        with self._lock:
            entries = [self._toc[identity] for identity in self._in_document_order(self._toc)]
        return [entry for entry in entries if needle in fold_case(entry.title)]

    # -- write side --------------------------------------------------------

    def is_initialized(self) -> bool:
        return self._initialized

    @contextmanager
    def transaction(self) -> Iterator[MemoryStorage]:
        with self._lock:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
                if not self._transaction_depth:
                    self._forget_released()

    def erase(self) -> None:
        with self._lock:
            self._reset()
            self._initialized = True
        logger.debug("Erased %s", type(self).__name__)

    def add_postings(self, identity: DocumentIdentity, postings: Mapping[str, Sequence[Posting]]) -> None:
        with self._lock:
            words = self._words_by_identity.setdefault(identity, set())
            for word, word_postings in postings.items():
                if not word_postings:
                    continue
                self._assign_sequence(identity)
                self._fulltext.setdefault(word, {}).setdefault(identity, []).extend(word_postings)
                words.add(word)

    def add_keyword_phrases(self, identity: DocumentIdentity, phrases: Sequence[str]) -> None:
        with self._lock:
            declared = self._phrases_by_identity.setdefault(identity, set())
            for phrase in phrases:
                normalized = normalize_phrase(phrase)
                if not normalized:
                    continue
                self._assign_sequence(identity)
                self._keywords.setdefault(normalized, {})[identity] = None
                declared.add(normalized)

    def add_toc_entry(self, entry: TocEntry) -> None:
        with self._lock:
            self._assign_sequence(entry.identity)
            self._toc[entry.identity] = entry

    def remove_by_identity(self, identity: DocumentIdentity) -> None:
        with self._lock:
            for word in self._words_by_identity.pop(identity, ()):
                by_identity = self._fulltext.get(word)
                if by_identity is None:
                    continue
                by_identity.pop(identity, None)
                if not by_identity:
                    del self._fulltext[word]
            for phrase in self._phrases_by_identity.pop(identity, ()):
                identities = self._keywords.get(phrase)
                if identities is None:
                    continue
                identities.pop(identity, None)
                if not identities:
                    del self._keywords[phrase]
            self._toc.pop(identity, None)
            self._released.add(identity)
            if not self._transaction_depth:
                self._forget_released()

    def cleanup(self) -> set[str]:
        """Recompute frequency-based exclusions and return the excluded terms.

        Only applies once the index holds ``exclusion_min_docs`` documents; a
        term found in more than ``exclusion_ratio`` of them is excluded.
        """
        with self._lock:
            total = len(self._toc)
            if total < self.exclusion_min_docs:
                self._excluded = set()
                return set()
            self._excluded = {
                word for word, by_identity in self._fulltext.items() if len(by_identity) / total > self.exclusion_ratio
            }
            excluded = set(self._excluded)
        if excluded:
            logger.info("Excluded %d frequent terms out of %d documents", len(excluded), total)
        return excluded

    # -- snapshots ---------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": SNAPSHOT_FORMAT_VERSION,
                "fulltext": {
                    word: [
                        posting.to_dict()
                        for identity in self._in_document_order(self._fulltext[word])
                        for posting in self._fulltext[word][identity]
                    ]
                    for word in sorted(self._fulltext)
                },
                "keywords": {
                    phrase: [identity.key for identity in self._in_document_order(self._keywords[phrase])]
                    for phrase in sorted(self._keywords)
                },
                "toc": [self._toc[identity].to_dict() for identity in self._in_document_order(self._toc)],
                "excluded": sorted(self._excluded),
            }

    def restore_snapshot(self, payload: Mapping[str, Any]) -> None:
        version = payload.get("version")
        if version != SNAPSHOT_FORMAT_VERSION:
            raise StorageError(f"Unsupported index snapshot version: {version!r}")
        with self._lock:
            self._reset()
            for entry_data in payload.get("toc", []):
                self.add_toc_entry(TocEntry.from_dict(entry_data))
            for word, postings_data in payload.get("fulltext", {}).items():
                for posting_data in postings_data:
                    posting = Posting.from_dict(posting_data)
                    self.add_postings(posting.identity, {word: [posting]})
            for phrase, keys in payload.get("keywords", {}).items():
                for key in keys:
                    self.add_keyword_phrases(DocumentIdentity.from_key(key), [phrase])
            self._excluded = set(payload.get("excluded", []))


class FileStorage(MemoryStorage):
    """``MemoryStorage`` persisted as one JSON snapshot.

    The storage is uninitialized until ``load()`` reads an existing snapshot
    or ``erase()`` starts a fresh one. Writes stay in memory until ``save()``;
    other processes see them after ``reload()``.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        stopwords: Sequence[str] | None = None,
        exclusion_ratio: float = 0.3,
        exclusion_min_docs: int = 20,
    ) -> None:
        super().__init__(stopwords=stopwords, exclusion_ratio=exclusion_ratio, exclusion_min_docs=exclusion_min_docs)
        self.path = Path(path)
        self._initialized = False

    def load(self) -> bool:
        """Read the snapshot from disk; returns False when no snapshot exists yet."""
        if not self.path.exists():
            logger.debug("No index snapshot at %s", self.path)
            return False
        try:
            payload = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read index snapshot {self.path}: {exc}") from exc
        try:
            self.restore_snapshot(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Corrupted index snapshot {self.path}: {exc}") from exc
        self._initialized = True
        logger.info("Loaded index snapshot %s (%d documents)", self.path, self.get_toc_size())
        return True

    def reload(self) -> None:
        if not self.load():
            logger.warning("Index snapshot %s disappeared; keeping the in-memory index", self.path)

    def save(self) -> Path:
        payload = self.to_snapshot()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write_json(self.path, payload)
        except OSError as exc:
            raise StorageError(f"Failed to write index snapshot {self.path}: {exc}") from exc
        logger.info("Saved index snapshot %s (%d documents)", self.path, len(payload["toc"]))
        return self.path

    def _atomic_write_json(self, path: Path, payload: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp") if path.suffix else path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(orjson.dumps(payload))
        tmp_path.replace(path)
