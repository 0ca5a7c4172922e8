"""Markup stripping and entity decoding with offsets back to the source text.

Content handed to the indexer and the snippet builder carries HTML markup.
Matching works on decoded text while snippets are cut from display text, so
``DecodedText`` keeps a per-character map between the two.
"""

from __future__ import annotations

from dataclasses import dataclass
import html
import re

from bs4 import BeautifulSoup


_DROPPED_TAGS = ["script", "style"]
_LINE_BREAK_TAGS = ["br", "hr"]
_BLOCK_TAGS = [
    "p",
    "div",
    "li",
    "ul",
    "ol",
    "dl",
    "dt",
    "dd",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "table",
    "tr",
    "td",
    "th",
    "blockquote",
    "pre",
    "section",
    "article",
    "header",
    "footer",
]
# Private-use character standing in for "&" while the parser runs.
_AMPERSAND_SENTINEL = "\ue000"
_INLINE_SPACE_PATTERN = re.compile(r"[ \t\r\f\v]+")
_PARAGRAPH_BREAK_PATTERN = re.compile(r"\s*\n\s*")
_ENTITY_PATTERN = re.compile(r"&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")


def strip_markup(text: str) -> str:
    """Return display text: tags removed, block boundaries as newlines, entities kept.

    Inline tags disappear without leaving a space so ``<b>con</b>tent`` stays
    one word; block-level tags and ``<br>`` become paragraph breaks.
    """
    if not text:
        return ""
    if "<" in text:
        text = _html_text(text)
    stripped = _INLINE_SPACE_PATTERN.sub(" ", text)
    stripped = _PARAGRAPH_BREAK_PATTERN.sub("\n", stripped)
    return stripped.strip()


def _html_text(markup: str) -> str:
    # Hiding "&" from the parser keeps entities in text nodes exactly as written.
    protected = markup.replace(_AMPERSAND_SENTINEL, "").replace("&", _AMPERSAND_SENTINEL)
    soup = BeautifulSoup(protected, "html.parser")
    for element in soup(_DROPPED_TAGS):
        element.decompose()
    for element in soup(_LINE_BREAK_TAGS):
        element.replace_with("\n")
    for element in soup(_BLOCK_TAGS):
        element.insert(0, "\n")
        element.append("\n")
    return soup.get_text().replace(_AMPERSAND_SENTINEL, "&")


@dataclass(frozen=True)
class DecodedText:
    """Entity-decoded text with character spans into the source."""

    source: str
    text: str
    starts: tuple[int, ...]
    ends: tuple[int, ...]

    @classmethod
    def decode(cls, source: str) -> DecodedText:
        parts: list[str] = []
        starts: list[int] = []
        ends: list[int] = []
        cursor = 0
        for match in _ENTITY_PATTERN.finditer(source):
            literal = source[cursor : match.start()]
            parts.append(literal)
            starts.extend(range(cursor, match.start()))
            ends.extend(range(cursor + 1, match.start() + 1))

            decoded = html.unescape(match.group(0))
            parts.append(decoded)
            starts.extend([match.start()] * len(decoded))
            ends.extend([match.end()] * len(decoded))
            cursor = match.end()

        parts.append(source[cursor:])
        starts.extend(range(cursor, len(source)))
        ends.extend(range(cursor + 1, len(source) + 1))
        return cls(source=source, text="".join(parts), starts=tuple(starts), ends=tuple(ends))

    def source_span(self, start: int, end: int) -> tuple[int, int]:
        """Map a non-empty ``[start, end)`` span of decoded text onto the source."""
        if start >= end:
            raise ValueError(f"Empty span [{start}, {end})")
        return self.starts[start], self.ends[end - 1]
