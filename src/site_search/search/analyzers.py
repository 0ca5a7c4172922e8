"""Text normalization for indexing and querying.

The same pipeline runs over documents and queries: a regex tokenizer that
keeps decimal numbers whole, a case-folding filter and a stemming filter.
Each token carries its character span in the source string, so callers can
highlight the original text.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
import re
from typing import Any, Protocol

from site_search.search.markup import DecodedText
from site_search.search.stemmers import Stemmer


TOKEN_PATTERN = r"\d+(?:[.,]\d+)+|[^\W_]+"
_NUMERIC_PATTERN = re.compile(r"\d+(?:[.,]\d+)*")


def is_numeric(text: str) -> bool:
    """Numbers (``7``, ``1,7``, ``7.0``) are never stemmed and only match exactly."""
    return _NUMERIC_PATTERN.fullmatch(text) is not None


def fold_case(text: str) -> str:
    return text.lower().replace("ё", "е")


@dataclass
class Token:
    """Represents a token emitted by analyzers."""

    text: str
    position: int
    start_char: int
    end_char: int
    stem: str = ""

    @property
    def is_numeric(self) -> bool:
        return is_numeric(self.text)

    @property
    def key(self) -> str:
        """Matching key: the stem for words, the exact text for numbers."""
        if self.is_numeric:
            return self.text
        return self.stem or self.text

    def copy_with(self, **updates: Any) -> Token:
        data = {
            "text": self.text,
            "position": self.position,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "stem": self.stem,
        }
        data.update(updates)
        return Token(**data)


class Tokenizer(Protocol):
    """Protocol implemented by tokenizers."""

    def __call__(self, text: str) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class TokenFilter(Protocol):
    """Protocol implemented by token filters."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class RegexTokenizer:
    """Splits text into letter/digit runs; punctuation, hyphens and underscores separate words."""

    def __init__(self, pattern: str = TOKEN_PATTERN, flags: int = re.UNICODE) -> None:
        self.pattern = re.compile(pattern, flags)

    def __call__(self, text: str) -> Iterator[Token]:
        for position, match in enumerate(self.pattern.finditer(text)):
            yield Token(
                text=match.group(0),
                position=position,
                start_char=match.start(),
                end_char=match.end(),
            )


class LowercaseFilter:
    """Filter that case-folds token text (``ё`` is folded to ``е``)."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            folded = fold_case(token.text)
            if folded == token.text:
                yield token
            else:
                yield token.copy_with(text=folded)


class StemFilter:
    """Attaches the stem to each non-numeric token."""

    def __init__(self, stemmer: Stemmer) -> None:
        self.stemmer = stemmer

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if token.is_numeric:
                yield token.copy_with(stem=token.text)
            else:
                yield token.copy_with(stem=self.stemmer.stem(token.text))


class AnalyzerPipeline:
    """Composable analyzer pipeline (tokenizer + filters)."""

    def __init__(self, tokenizer: Tokenizer, filters: Sequence[TokenFilter] | None = None) -> None:
        self.tokenizer = tokenizer
        self.filters = list(filters or [])

    def __call__(self, text: str) -> list[Token]:
        stream: Iterable[Token] = self.tokenizer(text)
        for token_filter in self.filters:
            stream = token_filter(stream)
        tokens = list(stream)
        for idx, token in enumerate(tokens):  # normalize positions post-filtering
            token.position = idx
        return tokens


class Normalizer:
    """Tokenizes and stems text the same way for documents and queries."""

    def __init__(self, stemmer: Stemmer) -> None:
        self.stemmer = stemmer
        self.pipeline = AnalyzerPipeline(RegexTokenizer(), [LowercaseFilter(), StemFilter(stemmer)])

    def tokenize(self, text: str) -> list[Token]:
        """Return tokens of ``text``; entities are decoded first, spans point into ``text``."""
        if not text:
            return []
        decoded = DecodedText.decode(text)
        tokens = self.pipeline(decoded.text)
        if decoded.text == text:
            return tokens
        for token in tokens:
            token.start_char, token.end_char = decoded.source_span(token.start_char, token.end_char)
        return tokens

    def stem(self, word: str) -> str:
        """Stem of a single word; numbers are returned unchanged."""
        folded = fold_case(word)
        if is_numeric(folded):
            return folded
        return self.stemmer.stem(folded)

    def keys(self, text: str) -> list[str]:
        return [token.key for token in self.tokenize(text)]
