"""Search data models."""

from __future__ import annotations

from array import array
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import math
import re
from typing import Any


_KEYWORD_SEPARATOR = re.compile(r"[,;]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class DocumentIdentity:
    """Composite key of an indexed document.

    ``id`` is supplied by the application; ``instance_id`` partitions distinct
    copies of the same ``id`` (site sections, locales).
    """

    id: str
    instance_id: int | None = None

    @property
    def key(self) -> str:
        instance = "" if self.instance_id is None else str(self.instance_id)
        return f"{instance}:{self.id}"

    @classmethod
    def from_key(cls, key: str) -> DocumentIdentity:
        instance, _, external_id = key.partition(":")
        return cls(id=external_id, instance_id=int(instance) if instance else None)

    def __str__(self) -> str:
        return self.key


class IndexField(str, Enum):
    """Document fields that produce postings. Description is display-only."""

    TITLE = "title"
    KEYWORD = "keyword"
    CONTENT = "content"


def normalize_phrase(phrase: str) -> str:
    """Case-fold and collapse whitespace so literal phrases compare reliably."""
    return _WHITESPACE.sub(" ", phrase).strip().lower().replace("ё", "е")


@dataclass(frozen=True)
class Indexable:
    """A document handed to the indexer."""

    id: str
    title: str
    content: str
    instance_id: int | None = None
    keywords: str = ""
    description: str = ""
    date: datetime | None = None
    url: str = ""

    @property
    def identity(self) -> DocumentIdentity:
        return DocumentIdentity(self.id, self.instance_id)

    def keyword_phrases(self) -> list[str]:
        """Literal keyword phrases in declaration order, without duplicates."""
        phrases: dict[str, None] = {}
        for chunk in _KEYWORD_SEPARATOR.split(self.keywords or ""):
            phrase = normalize_phrase(chunk)
            if phrase:
                phrases.setdefault(phrase)
        return list(phrases)


@dataclass(frozen=True)
class TocEntry:
    """Persisted metadata snapshot of an indexed document (no body text)."""

    identity: DocumentIdentity
    title: str
    description: str = ""
    date: datetime | None = None
    url: str = ""

    @classmethod
    def from_indexable(cls, indexable: Indexable) -> TocEntry:
        return cls(
            identity=indexable.identity,
            title=indexable.title,
            description=indexable.description,
            date=indexable.date,
            url=indexable.url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "k": self.identity.key,
            "t": self.title,
            "d": self.description,
            "dt": self.date.isoformat() if self.date else None,
            "u": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TocEntry:
        raw_date = data.get("dt")
        return cls(
            identity=DocumentIdentity.from_key(data["k"]),
            title=data.get("t", ""),
            description=data.get("d", ""),
            date=datetime.fromisoformat(raw_date) if raw_date else None,
            url=data.get("u", ""),
        )


@dataclass(frozen=True, slots=True)
class Posting:
    """Occurrences of one term in one field of one document."""

    identity: DocumentIdentity
    field: IndexField
    score: float
    positions: array

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "k": self.identity.key,
            "f": self.field.value,
            "s": self.score,
            "p": list(self.positions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Posting:
        return cls(
            identity=DocumentIdentity.from_key(data["k"]),
            field=IndexField(data["f"]),
            score=float(data["s"]),
            positions=array("I", (int(pos) for pos in data.get("p", []))),
        )


@dataclass(frozen=True)
class Query:
    """Search phrase with an optional instance filter and paging."""

    text: str
    instance_id: int | None = None
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError("Query offset must be non-negative")
        if self.limit is not None and self.limit < 0:
            raise ValueError("Query limit must be non-negative")


@dataclass(frozen=True)
class ScoringWeights:
    """Tuning constants for relevance scoring.

    Only the ordering title > keyword > content is contractual.
    """

    title: float = 20.0
    keyword: float = 10.0
    content: float = 1.0
    keyword_exact: float = 20.0
    keyword_phrase: float = 30.0
    repeat_ratio: float = 0.5
    phrase_bonus_ratio: float = 1.0

    def for_field(self, index_field: IndexField) -> float:
        if index_field is IndexField.TITLE:
            return self.title
        if index_field is IndexField.KEYWORD:
            return self.keyword
        return self.content

    def occurrence_factor(self, occurrences: int) -> float:
        """Diminishing growth for repeated occurrences within one field."""
        if occurrences <= 1:
            return 1.0
        return 1.0 + self.repeat_ratio * math.log2(occurrences)

    def field_score(self, index_field: IndexField, occurrences: int) -> float:
        return self.for_field(index_field) * self.occurrence_factor(occurrences)
