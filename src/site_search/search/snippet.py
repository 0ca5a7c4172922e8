"""Snippet extraction with sentence-boundary awareness.

For every result item the builder picks the run of consecutive sentences
that best covers the query, then highlights the matched words:

- the run starts and ends on a sentence containing a match
- it fits into ``max_chars`` (a single sentence always qualifies)
- it maximizes matches plus query neighbours found side by side
- ties go to the earliest run

A run that is still too long is cut around its first match on word
boundaries, with ``...`` marking cuts inside a sentence.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
import logging
import re

from site_search.config import Settings
from site_search.observability.metrics import SNIPPETS_BUILT
from site_search.search.analyzers import Normalizer, Token
from site_search.search.markup import strip_markup
from site_search.search.models import DocumentIdentity
from site_search.search.phrase import count_adjacent
from site_search.search.results import Highlighter, ResultSet
from site_search.search.stemmers import Stemmer, create_stemmer


logger = logging.getLogger(__name__)

ContentProvider = Callable[[Sequence[DocumentIdentity]], Mapping[DocumentIdentity, str]]

ELLIPSIS = "..."
DEFAULT_MAX_CHARS = 300

# A sentence ends after terminal punctuation followed by whitespace, or at a paragraph break
SENTENCE_BREAK_PATTERN = re.compile(r"(?<=[.!?…])\s+|\n")
_PARAGRAPH_BREAK_PATTERN = re.compile(r"\s*\n\s*")


@dataclass(frozen=True)
class Sentence:
    start: int
    end: int
    tokens: tuple[Token, ...]
    matches: int


def split_sentences(text: str) -> list[tuple[int, int]]:
    """Return ``[start, end)`` spans of the non-blank sentences of ``text``."""
    spans: list[tuple[int, int]] = []
    start = 0
    for match in SENTENCE_BREAK_PATTERN.finditer(text):
        _append_span(spans, text, start, match.start())
        start = match.end()
    _append_span(spans, text, start, len(text))
    return spans


def _append_span(spans: list[tuple[int, int]], text: str, start: int, end: int) -> None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start < end:
        spans.append((start, end))


class SnippetBuilder:
    """Attaches highlighted snippets to result items."""

    def __init__(self, stemmer: Stemmer, *, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self.normalizer = Normalizer(stemmer)
        self.max_chars = max_chars

    @classmethod
    def from_settings(cls, settings: Settings) -> SnippetBuilder:
        return cls(create_stemmer(settings.get_stemmer_languages()), max_chars=settings.snippet_max_chars)

    def attach_snippets(self, result_set: ResultSet, content_provider: ContentProvider) -> None:
        """Build snippets for the current page of ``result_set``.

        The provider is called once with the page's identities. Items without
        content or without any matching sentence keep their description.
        """
        items = result_set.items
        if not items:
            return
        contents = content_provider([item.identity for item in items])
        for item in items:
            content = contents.get(item.identity)
            if not content:
                logger.debug("No content for %s; snippet skipped", item.identity.key)
                SNIPPETS_BUILT.labels(outcome="missing_content").inc()
                continue
            snippet = self.build_snippet(content, result_set.highlighter)
            if snippet is None:
                logger.debug("No matching sentence in %s; snippet skipped", item.identity.key)
                SNIPPETS_BUILT.labels(outcome="no_match").inc()
                continue
            item.set_snippet(snippet)
            SNIPPETS_BUILT.labels(outcome="built").inc()

    def build_snippet(self, content: str, highlighter: Highlighter) -> str | None:
        """Return the highlighted snippet of markup-bearing ``content``, or None without a match."""
        if not highlighter.keys:
            return None
        display = strip_markup(content)
        if not display:
            return None

        sentences = self._sentences(display, highlighter)
        window = self._best_window(sentences, highlighter)
        if window is None:
            return None
        first, last = window
        start, end = sentences[first].start, sentences[last].end
        tokens = [token for sentence in sentences[first : last + 1] for token in sentence.tokens]

        prefix = suffix = ""
        if end - start > self.max_chars:
            anchor = next(token for token in tokens if highlighter.matches(token))
            cut_start, cut_end = self._trim(display, start, end, anchor)
            prefix = ELLIPSIS if cut_start > start else ""
            suffix = ELLIPSIS if cut_end < end else ""
            start, end = cut_start, cut_end

        body = highlighter.wrap(display, tokens, start=start, end=end)
        return prefix + _PARAGRAPH_BREAK_PATTERN.sub(" ", body) + suffix

    def _sentences(self, display: str, highlighter: Highlighter) -> list[Sentence]:
        tokens = self.normalizer.tokenize(display)
        sentences: list[Sentence] = []
        index = 0
        for start, end in split_sentences(display):
            while index < len(tokens) and tokens[index].start_char < start:
                index += 1
            sentence_tokens: list[Token] = []
            while index < len(tokens) and tokens[index].end_char <= end:
                sentence_tokens.append(tokens[index])
                index += 1
            matches = sum(1 for token in sentence_tokens if highlighter.matches(token))
            sentences.append(Sentence(start, end, tuple(sentence_tokens), matches))
        return sentences

    def _best_window(self, sentences: Sequence[Sentence], highlighter: Highlighter) -> tuple[int, int] | None:
        best: tuple[int, int] | None = None
        best_score = 0
        for first, opening in enumerate(sentences):
            if not opening.matches:
                continue
            for last in range(first, len(sentences)):
                closing = sentences[last]
                if last > first and closing.end - opening.start > self.max_chars:
                    break
                if not closing.matches:
                    continue
                window = sentences[first : last + 1]
                keys = [token.key for sentence in window for token in sentence.tokens]
                score = sum(sentence.matches for sentence in window) + count_adjacent(keys, highlighter.pairs)
                if score > best_score:
                    best, best_score = (first, last), score
        return best

    def _trim(self, display: str, start: int, end: int, anchor: Token) -> tuple[int, int]:
        """Cut ``display[start:end]`` to ``max_chars`` around ``anchor`` on word boundaries."""
        cut_start = max(start, anchor.start_char - self.max_chars // 3)
        cut_end = min(end, cut_start + self.max_chars)
        cut_start = max(start, cut_end - self.max_chars)

        if cut_start > start and not display[cut_start - 1].isspace():
            space = display.find(" ", cut_start, anchor.start_char)
            cut_start = space + 1 if space != -1 else anchor.start_char
        if cut_end < end and not display[cut_end].isspace():
            space = display.rfind(" ", anchor.end_char, cut_end)
            cut_end = space if space != -1 else max(anchor.end_char, cut_end)

        while cut_start < cut_end and display[cut_start].isspace():
            cut_start += 1
        while cut_end > cut_start and display[cut_end - 1].isspace():
            cut_end -= 1
        return cut_start, cut_end
