"""Query execution and relevance scoring."""

from __future__ import annotations

from collections.abc import Sequence
import logging

from opentelemetry.trace import SpanKind

from site_search.config import Settings
from site_search.observability.metrics import SEARCH_LATENCY, SEARCH_RESULTS, track_latency
from site_search.observability.tracing import create_span
from site_search.search.analyzers import Normalizer, Token
from site_search.search.models import DocumentIdentity, IndexField, Posting, Query, ScoringWeights, TocEntry
from site_search.search.phrase import adjacent_pairs, has_adjacent
from site_search.search.results import (
    DEFAULT_HIGHLIGHT_TEMPLATE,
    Highlighter,
    ResultItem,
    ResultSet,
    validate_highlight_template,
)
from site_search.search.stemmers import Stemmer, create_stemmer
from site_search.search.storage import StorageReader


logger = logging.getLogger(__name__)


class Finder:
    """Runs queries against the read side of a storage backend.

    Relevance is the sum of posting scores of every query term, plus a bonus
    for words declared as keywords and for query neighbours found next to
    each other in the same field.
    """

    def __init__(
        self,
        storage: StorageReader,
        stemmer: Stemmer,
        *,
        weights: ScoringWeights | None = None,
        highlight_template: str = DEFAULT_HIGHLIGHT_TEMPLATE,
    ) -> None:
        self.storage = storage
        self.normalizer = Normalizer(stemmer)
        self.weights = weights or ScoringWeights()
        self.highlight_template = validate_highlight_template(highlight_template)

    @classmethod
    def from_settings(cls, storage: StorageReader, settings: Settings) -> Finder:
        return cls(
            storage,
            create_stemmer(settings.get_stemmer_languages()),
            weights=settings.scoring_weights(),
            highlight_template=settings.highlight_template,
        )

    def set_highlight_template(self, template: str) -> None:
        """Set the ``str.format`` pattern wrapping matched words, e.g. ``<b>{}</b>``."""
        self.highlight_template = validate_highlight_template(template)

    def find(self, query: Query | str) -> ResultSet:
        if isinstance(query, str):
            query = Query(query)
        storage_label = type(self.storage).__name__
        with (
            create_span(
                "finder.find",
                kind=SpanKind.INTERNAL,
                attributes={"search.query": query.text[:100], "search.storage": storage_label},
            ) as span,
            track_latency(SEARCH_LATENCY, storage=storage_label),
        ):
            tokens = self._query_tokens(query.text)
            keys = [token.key for token in tokens]
            highlighter = Highlighter(
                normalizer=self.normalizer,
                keys=frozenset(keys),
                pairs=tuple(adjacent_pairs(keys)),
                template=self.highlight_template,
            )
            if not tokens:
                span.set_attribute("search.result_count", 0)
                SEARCH_RESULTS.labels(storage=storage_label).observe(0)
                return ResultSet(query, [], highlighter)

            relevance = self._score(tokens, query.text)
            if query.instance_id is not None:
                relevance = {
                    identity: score
                    for identity, score in relevance.items()
                    if identity.instance_id == query.instance_id
                }
            ranked = sorted(relevance.items(), key=lambda item: item[1], reverse=True)
            items = self._attach_toc(ranked)

            span.set_attribute("search.result_count", len(items))
            SEARCH_RESULTS.labels(storage=storage_label).observe(len(items))
            logger.debug("Query %r matched %d documents", query.text, len(items))
            return ResultSet(query, items, highlighter)

    def find_by_title(self, text: str) -> list[TocEntry]:
        """TOC entries whose title contains ``text`` (case-insensitive)."""
        return self.storage.find_toc_by_title(text)

    def _query_tokens(self, text: str) -> list[Token]:
        tokens = [
            token
            for token in self.normalizer.tokenize(text)
            if not self.storage.is_excluded(token.text) and not self.storage.is_excluded(token.key)
        ]
        for position, token in enumerate(tokens):
            token.position = position
        return tokens

    def _score(self, tokens: Sequence[Token], raw_query: str) -> dict[DocumentIdentity, float]:
        relevance: dict[DocumentIdentity, float] = {}
        postings_by_key: dict[str, list[Posting]] = {}

        for key in dict.fromkeys(token.key for token in tokens):
            postings = self.storage.get_postings(key)
            postings_by_key[key] = postings
            for posting in postings:
                relevance[posting.identity] = relevance.get(posting.identity, 0.0) + posting.score

        for word in dict.fromkeys(token.text for token in tokens):
            for identity in self.storage.get_single_keyword_index(word):
                relevance[identity] = relevance.get(identity, 0.0) + self.weights.keyword_exact
        if len(tokens) > 1:
            for identity in self.storage.get_multiple_keyword_index(raw_query):
                relevance[identity] = relevance.get(identity, 0.0) + self.weights.keyword_phrase

        for first, second in adjacent_pairs([token.key for token in tokens]):
            following = _positions_by_field(postings_by_key[second])
            for (identity, index_field), positions in _positions_by_field(postings_by_key[first]).items():
                next_positions = following.get((identity, index_field))
                if next_positions and has_adjacent(positions, next_positions):
                    bonus = self.weights.phrase_bonus_ratio * self.weights.for_field(index_field)
                    relevance[identity] = relevance.get(identity, 0.0) + bonus

        return relevance

    def _attach_toc(self, ranked: Sequence[tuple[DocumentIdentity, float]]) -> list[ResultItem]:
        items: list[ResultItem] = []
        for identity, score in ranked:
            entry = self.storage.get_toc_entry(identity)
            if entry is None:
                logger.warning("Dropping %s from results: postings exist but the TOC entry is missing", identity.key)
                continue
            items.append(
                ResultItem(
                    identity=identity,
                    relevance=score,
                    title=entry.title,
                    url=entry.url,
                    date=entry.date,
                    description=entry.description,
                )
            )
        return items


def _positions_by_field(postings: Sequence[Posting]) -> dict[tuple[DocumentIdentity, IndexField], Sequence[int]]:
    return {(posting.identity, posting.field): posting.positions for posting in postings}
