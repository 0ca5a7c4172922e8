"""Unit tests for the config module."""

from pydantic import ValidationError
import pytest

from site_search.config import Settings
from site_search.search.models import ScoringWeights


class TestConfig:
    """Test configuration loading and validation."""

    def test_config_defaults_are_applied(self):
        settings = Settings()

        assert settings.storage_backend == "memory"
        assert settings.auto_erase is False
        assert settings.highlight_template == "<i>{}</i>"
        assert settings.scoring_weights() == ScoringWeights()

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SITE_SEARCH_STORAGE_BACKEND", "sqlite")
        monkeypatch.setenv("SITE_SEARCH_STORAGE_PATH", "/tmp/index.sqlite")
        monkeypatch.setenv("SITE_SEARCH_AUTO_ERASE", "true")
        monkeypatch.setenv("SITE_SEARCH_TABLE_PREFIX", "site_")

        settings = Settings()

        assert settings.storage_backend == "sqlite"
        assert settings.storage_path == "/tmp/index.sqlite"
        assert settings.auto_erase is True
        assert settings.table_prefix == "site_"

    def test_env_file_is_read(self, tmp_path):
        (tmp_path / ".env").write_text("SITE_SEARCH_SNIPPET_MAX_CHARS=120\n", encoding="utf-8")

        assert Settings().snippet_max_chars == 120

    def test_stemmer_languages_parsing(self):
        settings = Settings(stemmer_languages=" Russian, english ,")

        assert settings.get_stemmer_languages() == ["russian", "english"]

    def test_stopwords_parsing(self):
        assert Settings(stopwords="И, The,,").get_stopwords() == ["и", "the"]
        assert Settings().get_stopwords() == []

    def test_scoring_weights(self):
        weights = Settings(title_weight=40.0, keyword_phrase_weight=5.0, repeat_ratio=0.0).scoring_weights()

        assert weights.title == 40.0
        assert weights.keyword_phrase == 5.0
        assert weights.occurrence_factor(8) == 1.0


class TestValidation:
    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            Settings(storage_backend="redis")

    @pytest.mark.parametrize("backend", ["file", "sqlite"])
    def test_persistent_backends_need_a_path(self, backend):
        with pytest.raises(ValidationError, match="SITE_SEARCH_STORAGE_PATH"):
            Settings(storage_backend=backend)

    def test_field_weights_must_be_ordered(self):
        with pytest.raises(ValidationError, match="must be ordered"):
            Settings(content_weight=15.0)

    def test_highlight_template_needs_placeholder(self):
        with pytest.raises(ValidationError, match="placeholder"):
            Settings(highlight_template="<b></b>")

    @pytest.mark.parametrize("template", ["<b>{}</b>{}", "{x}<b>{}</b>", "<b>{}</b>{"])
    def test_highlight_template_must_format_one_word(self, template):
        with pytest.raises(ValidationError, match="template"):
            Settings(highlight_template=template)

    @pytest.mark.parametrize(
        ("field", "value"),
        [("snippet_max_chars", 10), ("exclusion_ratio", 0.0), ("exclusion_min_docs", 0), ("title_weight", -1.0)],
    )
    def test_numeric_bounds(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})
