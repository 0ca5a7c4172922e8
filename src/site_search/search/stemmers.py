"""Language stemmers and the fallback chain used to normalize mixed corpora.

Each language stemmer declares the alphabet it understands. Words outside that
alphabet pass through unchanged, which lets a ``ChainedStemmer`` route every
word to the first stemmer that covers it and keep exact forms for scripts no
stemmer handles (for example Ukrainian-specific letters).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import re
from typing import Protocol

from nltk.stem import PorterStemmer
from nltk.stem.snowball import RussianStemmer


class Stemmer(Protocol):
    """Protocol implemented by stemmers."""

    def stem(self, word: str) -> str:  # pragma: no cover - interface definition
        ...


class LanguageStemmer:
    """Base class for single-language stemmers."""

    language: str = ""
    alphabet: re.Pattern[str] = re.compile(r"$^")

    def supports(self, word: str) -> bool:
        return bool(word) and self.alphabet.fullmatch(word.lower()) is not None

    def stem(self, word: str) -> str:
        lowered = word.lower()
        if not self.supports(lowered):
            return lowered
        return self._stem(lowered)

    def _stem(self, word: str) -> str:  # pragma: no cover - overridden
        raise NotImplementedError


class PorterStemmerEnglish(LanguageStemmer):
    """Porter algorithm for Latin-script English words."""

    language = "english"
    alphabet = re.compile(r"[a-z]+")

    def __init__(self) -> None:
        self._porter = PorterStemmer()

    def _stem(self, word: str) -> str:
        return self._porter.stem(word)


class PorterStemmerRussian(LanguageStemmer):
    """Snowball (Porter) algorithm for Russian words."""

    language = "russian"
    alphabet = re.compile(r"[а-яё]+")

    def __init__(self) -> None:
        self._snowball = RussianStemmer()

    def _stem(self, word: str) -> str:
        return self._snowball.stem(word.replace("ё", "е"))


class ChainedStemmer:
    """Try language stemmers in order; the first whose alphabet covers the word wins."""

    def __init__(self, stemmers: Sequence[LanguageStemmer]) -> None:
        if not stemmers:
            raise ValueError("ChainedStemmer needs at least one language stemmer")
        self.stemmers = tuple(stemmers)

    @property
    def languages(self) -> tuple[str, ...]:
        return tuple(stemmer.language for stemmer in self.stemmers)

    def stem(self, word: str) -> str:
        lowered = word.lower()
        for stemmer in self.stemmers:
            if stemmer.supports(lowered):
                return stemmer.stem(lowered)
        return lowered


_STEMMER_FACTORIES: dict[str, Callable[[], LanguageStemmer]] = {
    "english": PorterStemmerEnglish,
    "russian": PorterStemmerRussian,
}


def create_stemmer(languages: Sequence[str] | None = None) -> Stemmer:
    """Return a stemmer for the given languages, chaining them when several are requested."""

    names = [name.lower() for name in (languages or ["english"])]
    unknown = [name for name in names if name not in _STEMMER_FACTORIES]
    if unknown:
        msg = f"Unknown stemmer language(s) {unknown}. Available: {sorted(_STEMMER_FACTORIES)}"
        raise ValueError(msg)
    stemmers = [_STEMMER_FACTORIES[name]() for name in names]
    if len(stemmers) == 1:
        return stemmers[0]
    return ChainedStemmer(stemmers)
