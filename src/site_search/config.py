"""Centralized configuration for site-search using Pydantic Settings."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from site_search.search.models import ScoringWeights
from site_search.search.results import validate_highlight_template


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Strictly typed configuration loaded from ``SITE_SEARCH_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SITE_SEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Storage
    storage_backend: Literal["memory", "file", "sqlite"] = Field(
        default="memory", description="Storage backend holding the index structures"
    )
    storage_path: str = Field(default="", description="Index file (file backend) or database path (sqlite backend)")
    table_prefix: str = Field(default="", description="Table name prefix for the sqlite backend")
    auto_erase: bool = Field(
        default=False,
        description="Erase uninitialized storage before the first write instead of failing",
    )

    # Text normalization
    stemmer_languages: str = Field(
        default="russian,english",
        description="Comma-separated stemmer chain, tried in order",
    )
    stopwords: str = Field(default="", description="Comma-separated words excluded from queries")
    exclusion_ratio: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        description="Share of documents above which a term is excluded on cleanup (file/memory backends)",
    )
    exclusion_min_docs: int = Field(
        default=20, ge=1, description="Minimum index size before frequency-based exclusion applies"
    )

    # Scoring
    title_weight: float = Field(default=20.0, gt=0.0, description="Weight of a term found in the title")
    keyword_weight: float = Field(default=10.0, gt=0.0, description="Weight of a term found in keyword phrases")
    content_weight: float = Field(default=1.0, gt=0.0, description="Weight of a term found in the content")
    keyword_exact_weight: float = Field(
        default=20.0, ge=0.0, description="Bonus when a query word equals a declared single-word keyword"
    )
    keyword_phrase_weight: float = Field(
        default=30.0, ge=0.0, description="Bonus when the whole query equals a declared multi-word keyword phrase"
    )
    repeat_ratio: float = Field(
        default=0.5, ge=0.0, description="Score growth per doubling of a term's occurrences within a field"
    )
    phrase_bonus_ratio: float = Field(
        default=1.0, gt=0.0, description="Bonus, relative to the field weight, for query-adjacent terms found adjacent"
    )

    # Presentation
    highlight_template: str = Field(default="<i>{}</i>", description="str.format pattern wrapping matched words")
    snippet_max_chars: int = Field(default=300, ge=50, description="Maximum snippet length in characters")

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if not (self.title_weight > self.keyword_weight > self.content_weight):
            raise ValueError(
                "Field weights must be ordered: SITE_SEARCH_TITLE_WEIGHT > SITE_SEARCH_KEYWORD_WEIGHT "
                "> SITE_SEARCH_CONTENT_WEIGHT"
            )
        if self.storage_backend != "memory" and not self.storage_path:
            raise ValueError(f"SITE_SEARCH_STORAGE_PATH must be set for the '{self.storage_backend}' backend")
        validate_highlight_template(self.highlight_template)
        return self

    def get_stemmer_languages(self) -> list[str]:
        """Stemmer chain as an ordered list of language names."""
        return [language.lower() for language in _split_csv(self.stemmer_languages)]

    def get_stopwords(self) -> list[str]:
        """Configured stop words, lowercased."""
        return [word.lower() for word in _split_csv(self.stopwords)]

    def scoring_weights(self) -> ScoringWeights:
        return ScoringWeights(
            title=self.title_weight,
            keyword=self.keyword_weight,
            content=self.content_weight,
            keyword_exact=self.keyword_exact_weight,
            keyword_phrase=self.keyword_phrase_weight,
            repeat_ratio=self.repeat_ratio,
            phrase_bonus_ratio=self.phrase_bonus_ratio,
        )
