"""SQLite storage backend.

Index structures live in five tables sharing an optional name prefix, so
several indexes can coexist in one database:

- ``toc`` - one row per document identity (display metadata)
- ``fulltext`` - one row per (term, document, field) with the binary
  encoded positions of the term in that field
- ``keyword`` - literal keyword phrases declared by documents
- ``excluded`` - frequent terms excluded by ``cleanup()``
- ``document_order`` - the sequence number each identity got when it was
  first written

Rows are read back in document order, then insertion order (rowid), which
keeps result ordering identical to the in-memory backend. An identity removed
and written again inside one transaction keeps its sequence number.
"""

from __future__ import annotations

from array import array
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
import logging
from pathlib import Path
import re
import sqlite3
import threading

from site_search.exceptions import StorageError
from site_search.search.analyzers import fold_case
from site_search.search.models import DocumentIdentity, IndexField, Posting, TocEntry, normalize_phrase
from site_search.search.sqlite_pragmas import apply_connection_pragmas


logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"
_TABLE_PREFIX_PATTERN = re.compile(r"[A-Za-z0-9_]*")


class SQLiteConnectionPool:
    """Thread-safe connection pool with thread-local connections.

    An in-memory database only exists inside its connection, so ``:memory:``
    uses one shared connection and serializes access to it instead.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self.shared = self.db_path == MEMORY_DATABASE
        self._local = threading.local()
        self._shared_connection: sqlite3.Connection | None = None
        self._shared_lock = threading.RLock()

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get the connection of the calling thread."""
        if self.shared:
            with self._shared_lock:
                if self._shared_connection is None:
                    self._shared_connection = self._create_connection()
                yield self._shared_connection
            return

        if getattr(self._local, "connection", None) is None:
            self._local.connection = self._create_connection()
        yield self._local.connection

    def _create_connection(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            apply_connection_pragmas(conn, wal=not self.shared)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open SQLite database {self.db_path}: {exc}") from exc
        return conn

    def close_all(self) -> None:
        """Close the calling thread's connection (or the shared one)."""
        if self.shared:
            with self._shared_lock:
                if self._shared_connection is not None:
                    self._shared_connection.close()
                    self._shared_connection = None
            return
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None


class SqliteStorage:
    """Storage contract implemented on SQLite tables.

    Writes run inside ``BEGIN IMMEDIATE`` transactions; ``transaction()`` is
    re-entrant within a thread so individual write calls join an enclosing
    transaction.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        table_prefix: str = "",
        stopwords: Sequence[str] | None = None,
        exclusion_ratio: float = 0.3,
        exclusion_min_docs: int = 20,
    ) -> None:
        if not _TABLE_PREFIX_PATTERN.fullmatch(table_prefix):
            raise ValueError(f"Invalid table prefix {table_prefix!r}: only letters, digits and '_' are allowed")
        self.db_path = db_path
        self.table_prefix = table_prefix
        self.exclusion_ratio = exclusion_ratio
        self.exclusion_min_docs = exclusion_min_docs
        self._stopwords = frozenset(fold_case(word) for word in stopwords or ())
        self._pool = SQLiteConnectionPool(db_path)
        self._write_lock = threading.RLock()
        self._depth = threading.local()
        self._released: set[str] = set()

        self.toc_table = f"{table_prefix}toc"
        self.fulltext_table = f"{table_prefix}fulltext"
        self.keyword_table = f"{table_prefix}keyword"
        self.excluded_table = f"{table_prefix}excluded"
        self.order_table = f"{table_prefix}document_order"
        self._tables = (self.toc_table, self.fulltext_table, self.keyword_table, self.excluded_table, self.order_table)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._pool.get_connection() as conn:
            try:
                yield conn
            except sqlite3.Error as exc:
                raise StorageError(f"SQLite operation failed on {self.db_path}: {exc}") from exc

    def close(self) -> None:
        self._pool.close_all()

    # -- schema ------------------------------------------------------------

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.toc_table} (
                doc_key TEXT PRIMARY KEY,
                external_id TEXT NOT NULL,
                instance_id INTEGER,
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                url TEXT NOT NULL DEFAULT '',
                date TEXT
            )""")
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.fulltext_table} (
                word TEXT NOT NULL,
                doc_key TEXT NOT NULL,
                field TEXT NOT NULL,
                score REAL NOT NULL,
                positions_blob BLOB,
                UNIQUE (word, doc_key, field)
            )""")
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{self.fulltext_table}_doc_key ON {self.fulltext_table}(doc_key)"
        )
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.keyword_table} (
                phrase TEXT NOT NULL,
                doc_key TEXT NOT NULL,
                multiword INTEGER NOT NULL,
                UNIQUE (phrase, doc_key)
            )""")
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{self.keyword_table}_doc_key ON {self.keyword_table}(doc_key)")
        conn.execute(f"CREATE TABLE IF NOT EXISTS {self.excluded_table} (word TEXT PRIMARY KEY)")
        conn.execute(f"CREATE TABLE IF NOT EXISTS {self.order_table} (doc_key TEXT PRIMARY KEY, seq INTEGER NOT NULL)")

    def _drop_schema(self, conn: sqlite3.Connection) -> None:
        for table in self._tables:
            conn.execute(f"DROP TABLE IF EXISTS {table}")

    # -- write side --------------------------------------------------------

    def is_initialized(self) -> bool:
        placeholders = ", ".join("?" for _ in self._tables)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT name FROM sqlite_master WHERE type = 'table' AND name IN ({placeholders})", self._tables
            ).fetchall()
        return len(rows) == len(self._tables)

    @contextmanager
    def transaction(self) -> Iterator[SqliteStorage]:
        with self._write_lock, self._pool.get_connection() as conn:
            depth = getattr(self._depth, "value", 0)
            if depth:
                self._depth.value = depth + 1
                try:
                    yield self
                finally:
                    self._depth.value = depth
                return

            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to start transaction on {self.db_path}: {exc}") from exc
            self._depth.value = 1
            try:
                yield self
            except BaseException:
                self._depth.value = 0
                self._released.clear()
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            self._depth.value = 0
            try:
                self._forget_released(conn)
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Failed to commit transaction on {self.db_path}: {exc}") from exc

    def _assign_sequence(self, conn: sqlite3.Connection, identity: DocumentIdentity) -> None:
        conn.execute(
            f"INSERT OR IGNORE INTO {self.order_table} (doc_key, seq) "
            f"SELECT ?, COALESCE(MAX(seq), -1) + 1 FROM {self.order_table}",
            (identity.key,),
        )

    def _forget_released(self, conn: sqlite3.Connection) -> None:
        # Identities removed and not written again lose their place.
        released, self._released = self._released, set()
        for doc_key in released:
            conn.execute(
                f"DELETE FROM {self.order_table} WHERE doc_key = ? "
                f"AND NOT EXISTS (SELECT 1 FROM {self.toc_table} WHERE doc_key = ?) "
                f"AND NOT EXISTS (SELECT 1 FROM {self.fulltext_table} WHERE doc_key = ?) "
                f"AND NOT EXISTS (SELECT 1 FROM {self.keyword_table} WHERE doc_key = ?)",
                (doc_key,) * 4,
            )

    def erase(self) -> None:
        with self.transaction(), self._connection() as conn:
            self._drop_schema(conn)
            self._create_schema(conn)
        logger.info("Erased SQLite index %s (prefix %r)", self.db_path, self.table_prefix)

    def add_postings(self, identity: DocumentIdentity, postings: Mapping[str, Sequence[Posting]]) -> None:
        rows = [
            (word, identity.key, posting.field.value, posting.score, array("I", posting.positions).tobytes())
            for word, word_postings in postings.items()
            for posting in word_postings
        ]
        if not rows:
            return
        with self.transaction(), self._connection() as conn:
            self._assign_sequence(conn, identity)
            conn.executemany(
                f"INSERT OR REPLACE INTO {self.fulltext_table} (word, doc_key, field, score, positions_blob) "
                "VALUES (?, ?, ?, ?, ?)",
                rows,
            )

    def add_keyword_phrases(self, identity: DocumentIdentity, phrases: Sequence[str]) -> None:
        rows = []
        for phrase in phrases:
            normalized = normalize_phrase(phrase)
            if normalized:
                rows.append((normalized, identity.key, int(" " in normalized)))
        if not rows:
            return
        with self.transaction(), self._connection() as conn:
            self._assign_sequence(conn, identity)
            conn.executemany(
                f"INSERT OR IGNORE INTO {self.keyword_table} (phrase, doc_key, multiword) VALUES (?, ?, ?)",
                rows,
            )

    def add_toc_entry(self, entry: TocEntry) -> None:
        with self.transaction(), self._connection() as conn:
            self._assign_sequence(conn, entry.identity)
            conn.execute(
                f"INSERT OR REPLACE INTO {self.toc_table} "
                "(doc_key, external_id, instance_id, title, description, url, date) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.identity.key,
                    entry.identity.id,
                    entry.identity.instance_id,
                    entry.title,
                    entry.description,
                    entry.url,
                    entry.date.isoformat() if entry.date else None,
                ),
            )

    def remove_by_identity(self, identity: DocumentIdentity) -> None:
        with self.transaction(), self._connection() as conn:
            for table in (self.fulltext_table, self.keyword_table, self.toc_table):
                conn.execute(f"DELETE FROM {table} WHERE doc_key = ?", (identity.key,))
            self._released.add(identity.key)

    def cleanup(self) -> set[str]:
        """Recompute frequency-based exclusions, like ``MemoryStorage.cleanup``."""
        with self.transaction(), self._connection() as conn:
            conn.execute(f"DELETE FROM {self.excluded_table}")
            total = conn.execute(f"SELECT COUNT(*) FROM {self.toc_table}").fetchone()[0]
            if total < self.exclusion_min_docs:
                return set()
            conn.execute(
                f"INSERT INTO {self.excluded_table} (word) "
                f"SELECT word FROM {self.fulltext_table} GROUP BY word HAVING COUNT(DISTINCT doc_key) > ?",
                (self.exclusion_ratio * total,),
            )
            excluded = {row[0] for row in conn.execute(f"SELECT word FROM {self.excluded_table}")}
        if excluded:
            logger.info("Excluded %d frequent terms out of %d documents", len(excluded), total)
        return excluded

    # -- read side ---------------------------------------------------------

    def get_postings(self, word: str) -> list[Posting]:
        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT f.doc_key, f.field, f.score, f.positions_blob FROM {self.fulltext_table} AS f "
                f"LEFT JOIN {self.order_table} AS o ON o.doc_key = f.doc_key "
                "WHERE f.word = ? ORDER BY o.seq, f.rowid",
                (word,),
            )
            postings: list[Posting] = []
            for doc_key, field_name, score, positions_blob in cursor:
                positions = array("I")
                if positions_blob:
                    positions.frombytes(positions_blob)
                postings.append(
                    Posting(
                        identity=DocumentIdentity.from_key(doc_key),
                        field=IndexField(field_name),
                        score=float(score),
                        positions=positions,
                    )
                )
            return postings

    def is_excluded(self, word: str) -> bool:
        folded = fold_case(word)
        if folded in self._stopwords:
            return True
        with self._connection() as conn:
            row = conn.execute(f"SELECT 1 FROM {self.excluded_table} WHERE word = ?", (folded,)).fetchone()
        return row is not None

    def _keyword_identities(self, phrase: str, *, multiword: bool) -> list[DocumentIdentity]:
        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT k.doc_key FROM {self.keyword_table} AS k "
                f"LEFT JOIN {self.order_table} AS o ON o.doc_key = k.doc_key "
                "WHERE k.phrase = ? AND k.multiword = ? ORDER BY o.seq, k.rowid",
                (phrase, int(multiword)),
            )
            return [DocumentIdentity.from_key(row[0]) for row in cursor]

    def get_single_keyword_index(self, word: str) -> list[DocumentIdentity]:
        phrase = normalize_phrase(word)
        if not phrase or " " in phrase:
            return []
        return self._keyword_identities(phrase, multiword=False)

    def get_multiple_keyword_index(self, phrase: str) -> list[DocumentIdentity]:
        normalized = normalize_phrase(phrase)
        if " " not in normalized:
            return []
        return self._keyword_identities(normalized, multiword=True)

    def get_toc_entry(self, identity: DocumentIdentity) -> TocEntry | None:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT doc_key, title, description, url, date FROM {self.toc_table} WHERE doc_key = ?",
                (identity.key,),
            ).fetchone()
        return _toc_from_row(row) if row else None

    def get_toc_size(self) -> int:
        with self._connection() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM {self.toc_table}").fetchone()[0])

    def find_toc_by_title(self, text: str) -> list[TocEntry]:
        needle = fold_case(text.strip())
        if not needle:
            return []
        # SQLite's LOWER() only folds ASCII, so Cyrillic titles are matched in Python.
        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT t.doc_key, t.title, t.description, t.url, t.date FROM {self.toc_table} AS t "
                f"LEFT JOIN {self.order_table} AS o ON o.doc_key = t.doc_key ORDER BY o.seq, t.rowid"
            )
            return [_toc_from_row(row) for row in cursor if needle in fold_case(row[1])]


def _toc_from_row(row: Sequence) -> TocEntry:
    doc_key, title, description, url, raw_date = row
    return TocEntry(
        identity=DocumentIdentity.from_key(doc_key),
        title=title,
        description=description or "",
        url=url or "",
        date=datetime.fromisoformat(raw_date) if raw_date else None,
    )
