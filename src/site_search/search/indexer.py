"""Document indexing.

The indexer turns an ``Indexable`` into postings, keyword phrases and a TOC
entry and writes them through the storage contract. Re-indexing an identity
replaces its previous version inside one storage transaction, so readers see
either the old or the new document, never a mix.
"""

from __future__ import annotations

from array import array
from collections.abc import Iterator, Sequence
import logging

from site_search.config import Settings
from site_search.exceptions import UninitializedStorageError
from site_search.observability.metrics import INDEX_OPERATIONS
from site_search.observability.tracing import create_span
from site_search.search.analyzers import Normalizer, Token
from site_search.search.markup import strip_markup
from site_search.search.models import DocumentIdentity, Indexable, IndexField, Posting, ScoringWeights, TocEntry
from site_search.search.stemmers import Stemmer, create_stemmer
from site_search.search.storage import StorageWriter


logger = logging.getLogger(__name__)

# Position gap between keyword phrases, so adjacency never spans two phrases
KEYWORD_PHRASE_GAP = 2


class Indexer:
    """Writes documents into a storage backend."""

    def __init__(
        self,
        storage: StorageWriter,
        stemmer: Stemmer,
        *,
        auto_erase: bool = False,
        weights: ScoringWeights | None = None,
    ) -> None:
        self.storage = storage
        self.normalizer = Normalizer(stemmer)
        self.weights = weights or ScoringWeights()
        self._auto_erase = auto_erase

    @classmethod
    def from_settings(cls, storage: StorageWriter, settings: Settings) -> Indexer:
        return cls(
            storage,
            create_stemmer(settings.get_stemmer_languages()),
            auto_erase=settings.auto_erase,
            weights=settings.scoring_weights(),
        )

    @property
    def auto_erase(self) -> bool:
        return self._auto_erase

    def set_auto_erase(self, enabled: bool) -> None:
        """Erase uninitialized storage on the next write instead of raising."""
        self._auto_erase = enabled

    @property
    def _storage_label(self) -> str:
        return type(self.storage).__name__

    def _ensure_initialized(self) -> None:
        if self.storage.is_initialized():
            return
        if not self._auto_erase:
            raise UninitializedStorageError()
        logger.info("Storage %s is not initialized; erasing it before the first write", self._storage_label)
        self.storage.erase()

    def index(self, indexable: Indexable) -> None:
        """Add or replace ``indexable`` in the index."""
        identity = indexable.identity
        with create_span(
            "indexer.index",
            attributes={"search.document": identity.key, "search.storage": self._storage_label},
        ):
            postings = self.build_postings(indexable)
            phrases = indexable.keyword_phrases()
            with self.storage.transaction():
                self._ensure_initialized()
                self.storage.remove_by_identity(identity)
                self.storage.add_postings(identity, postings)
                self.storage.add_keyword_phrases(identity, phrases)
                self.storage.add_toc_entry(TocEntry.from_indexable(indexable))

        INDEX_OPERATIONS.labels(operation="index", storage=self._storage_label).inc()
        logger.debug("Indexed %s: %d terms, %d keyword phrases", identity.key, len(postings), len(phrases))

    def remove_by_id(self, external_id: str, instance_id: int | None = None) -> None:
        """Remove every contribution of one identity; absent identities are a no-op."""
        identity = DocumentIdentity(external_id, instance_id)
        with create_span(
            "indexer.remove",
            attributes={"search.document": identity.key, "search.storage": self._storage_label},
        ):
            with self.storage.transaction():
                if not self.storage.is_initialized():
                    logger.debug("Skipped removing %s: storage is not initialized", identity.key)
                    return
                self.storage.remove_by_identity(identity)

        INDEX_OPERATIONS.labels(operation="remove", storage=self._storage_label).inc()
        logger.debug("Removed %s", identity.key)

    def build_postings(self, indexable: Indexable) -> dict[str, list[Posting]]:
        """Group the document's tokens by matching key, one posting per field."""
        identity = indexable.identity
        postings: dict[str, list[Posting]] = {}
        for index_field, tokens in self._field_tokens(indexable):
            positions_by_key: dict[str, list[int]] = {}
            for token in tokens:
                positions_by_key.setdefault(token.key, []).append(token.position)
            for key, positions in positions_by_key.items():
                postings.setdefault(key, []).append(
                    Posting(
                        identity=identity,
                        field=index_field,
                        score=self.weights.field_score(index_field, len(positions)),
                        positions=array("I", positions),
                    )
                )
        return postings

    def _field_tokens(self, indexable: Indexable) -> Iterator[tuple[IndexField, list[Token]]]:
        yield IndexField.TITLE, self.normalizer.tokenize(indexable.title)
        yield IndexField.KEYWORD, self._keyword_tokens(indexable.keyword_phrases())
        yield IndexField.CONTENT, self.normalizer.tokenize(strip_markup(indexable.content))

    def _keyword_tokens(self, phrases: Sequence[str]) -> list[Token]:
        tokens: list[Token] = []
        offset = 0
        for phrase in phrases:
            phrase_tokens = self.normalizer.tokenize(phrase)
            if not phrase_tokens:
                continue
            tokens.extend(token.copy_with(position=token.position + offset) for token in phrase_tokens)
            offset = tokens[-1].position + KEYWORD_PHRASE_GAP
        return tokens
