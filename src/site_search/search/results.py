"""Ranked search output.

``ResultSet`` keeps the items of one query in descending relevance order and
lets the application override a single item's relevance afterwards (pinning a
page to the top, for example). Items know how to highlight their own title
with the query's stems.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
import logging

from site_search.search.analyzers import Normalizer, Token
from site_search.search.models import DocumentIdentity, Query


logger = logging.getLogger(__name__)

DEFAULT_HIGHLIGHT_TEMPLATE = "<i>{}</i>"


def validate_highlight_template(template: str) -> str:
    """Return ``template`` if it formats exactly one ``{}`` placeholder, else raise ``ValueError``."""
    if template.count("{}") != 1:
        raise ValueError(f"Highlight template must contain exactly one '{{}}' placeholder: {template!r}")
    try:
        template.format("x")
    except (IndexError, KeyError, ValueError) as exc:
        raise ValueError(f"Invalid highlight template {template!r}: {exc}") from exc
    return template


@dataclass(frozen=True)
class Highlighter:
    """Query stems plus the template used to wrap matching words."""

    normalizer: Normalizer
    keys: frozenset[str]
    pairs: tuple[tuple[str, str], ...] = ()
    template: str = DEFAULT_HIGHLIGHT_TEMPLATE

    def matches(self, token: Token) -> bool:
        return token.key in self.keys

    def wrap(self, text: str, tokens: Iterable[Token], *, start: int = 0, end: int | None = None) -> str:
        """Wrap matching tokens that lie inside ``text[start:end]`` and return that slice."""
        stop = len(text) if end is None else end
        parts: list[str] = []
        cursor = start
        for token in tokens:
            if token.start_char < cursor or token.end_char > stop or not self.matches(token):
                continue
            parts.append(text[cursor : token.start_char])
            parts.append(self.template.format(text[token.start_char : token.end_char]))
            cursor = token.end_char
        parts.append(text[cursor:stop])
        return "".join(parts)

    def highlight(self, text: str) -> str:
        if not text or not self.keys:
            return text
        return self.wrap(text, self.normalizer.tokenize(text))


@dataclass
class ResultItem:
    """One matched document with its TOC metadata."""

    identity: DocumentIdentity
    relevance: float
    title: str
    url: str = ""
    date: datetime | None = None
    description: str = ""
    highlighter: Highlighter | None = field(default=None, repr=False, compare=False)
    _snippet: str | None = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def instance_id(self) -> int | None:
        return self.identity.instance_id

    @property
    def snippet(self) -> str:
        """Highlighted snippet once built, the description until then."""
        if self._snippet is not None:
            return self._snippet
        return self.description

    @property
    def has_snippet(self) -> bool:
        return self._snippet is not None

    def set_snippet(self, snippet: str | None) -> None:
        self._snippet = snippet

    @property
    def highlighted_title(self) -> str:
        if self.highlighter is None:
            return self.title
        return self.highlighter.highlight(self.title)


class ResultSet:
    """Items matched by one query, kept in descending relevance order."""

    def __init__(self, query: Query, items: Sequence[ResultItem], highlighter: Highlighter) -> None:
        self.query = query
        self.highlighter = highlighter
        self._items = list(items)
        for item in self._items:
            item.highlighter = highlighter
        self._sort()

    def _sort(self) -> None:
        # sorted() is stable, so equal relevance keeps the current order
        self._items.sort(key=lambda item: item.relevance, reverse=True)

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    @property
    def all_items(self) -> list[ResultItem]:
        return list(self._items)

    @property
    def items(self) -> list[ResultItem]:
        """Sorted items with the query's offset and limit applied."""
        start = self.query.offset
        if self.query.limit is None:
            return self._items[start:]
        return self._items[start : start + self.query.limit]

    def get_sorted_relevance_by_external_id(self) -> dict[DocumentIdentity, float]:
        return {item.identity: item.relevance for item in self._items}

    def set_relevance_ratio(self, identity: DocumentIdentity, value: float) -> None:
        """Overwrite one item's relevance and re-sort; unknown identities are ignored."""
        for item in self._items:
            if item.identity == identity:
                item.relevance = float(value)
                self._sort()
                return
        logger.debug("Relevance override for %s ignored: not in result set", identity)
