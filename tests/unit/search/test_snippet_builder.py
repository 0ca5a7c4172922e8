"""Tests for snippet extraction."""

import pytest

from site_search.config import Settings
from site_search.search.analyzers import Normalizer
from site_search.search.finder import Finder
from site_search.search.indexer import Indexer
from site_search.search.models import DocumentIdentity, Indexable, Query
from site_search.search.results import Highlighter
from site_search.search.snippet import SnippetBuilder, split_sentences
from site_search.search.storage import MemoryStorage


@pytest.fixture
def builder(stemmer):
    return SnippetBuilder(stemmer)


def highlighter_for(stemmer, query, template="<i>{}</i>"):
    normalizer = Normalizer(stemmer)
    keys = normalizer.keys(query)
    pairs = tuple(zip(keys, keys[1:]))
    return Highlighter(normalizer=normalizer, keys=frozenset(keys), pairs=pairs, template=template)


def test_split_sentences():
    assert split_sentences("One. Two!\nThree?  Four") == [(0, 4), (5, 9), (10, 16), (18, 22)]
    assert split_sentences("  \n ") == []


class TestBuildSnippet:
    def test_picks_the_matching_sentence(self, builder, stemmer):
        content = "<p>First sentence here. Apple is red.</p><p>Other text.</p>"

        assert builder.build_snippet(content, highlighter_for(stemmer, "apple")) == "<i>Apple</i> is red."

    def test_joins_nearby_matching_sentences(self, builder, stemmer):
        content = "Apple one. Filler. Apples two."

        snippet = builder.build_snippet(content, highlighter_for(stemmer, "apple"))

        assert snippet == "<i>Apple</i> one. Filler. <i>Apples</i> two."

    def test_paragraphs_are_joined_with_spaces(self, builder, stemmer):
        content = "<p>Apple one</p><p>apple two</p>"

        assert builder.build_snippet(content, highlighter_for(stemmer, "apple")) == "<i>Apple</i> one <i>apple</i> two"

    def test_window_spans_every_matching_sentence_that_fits(self, builder, stemmer):
        content = "Red car and apple.\nRed apple."

        snippet = builder.build_snippet(content, highlighter_for(stemmer, "red apple"))

        assert snippet == "<i>Red</i> car and <i>apple</i>. <i>Red</i> <i>apple</i>."

    def test_prefers_sentences_with_adjacent_query_words(self, stemmer):
        builder = SnippetBuilder(stemmer, max_chars=50)
        content = "Red car and green apple here. Some long filler sentence without anything useful in it. Red apple."

        snippet = builder.build_snippet(content, highlighter_for(stemmer, "red apple"))

        assert snippet == "<i>Red</i> <i>apple</i>."

    def test_long_sentence_is_cut_around_the_match(self, stemmer):
        builder = SnippetBuilder(stemmer, max_chars=60)
        content = " ".join(["filler"] * 20 + ["apple"] + ["filler"] * 20) + "."

        snippet = builder.build_snippet(content, highlighter_for(stemmer, "apple"))

        assert snippet == "...filler filler <i>apple</i> filler filler filler filler filler..."

    def test_entities_survive_highlighting(self, builder, stemmer):
        content = "Escaping &plus; and &quot;plus&quot;."

        snippet = builder.build_snippet(content, highlighter_for(stemmer, "plus"))

        assert snippet == "Escaping &plus; and &quot;<i>plus</i>&quot;."

    def test_no_match_returns_none(self, builder, stemmer):
        assert builder.build_snippet("Nothing here.", highlighter_for(stemmer, "apple")) is None

    def test_markup_only_returns_none(self, builder, stemmer):
        assert builder.build_snippet("<script>apple</script>", highlighter_for(stemmer, "apple")) is None

    def test_template_is_applied(self, builder, stemmer):
        snippet = builder.build_snippet("Apple pie.", highlighter_for(stemmer, "apple", "<b>{}</b>"))

        assert snippet == "<b>Apple</b> pie."


class TestAttachSnippets:
    @pytest.fixture
    def results(self, stemmer):
        storage = MemoryStorage()
        indexer = Indexer(storage, stemmer)
        indexer.index(Indexable(id="a", title="Apple", content="Apple pie. Nothing else.", description="A"))
        indexer.index(Indexable(id="b", title="Apple", content="", description="B"))
        indexer.index(Indexable(id="c", title="Apple", content="Only pears.", description="C"))
        return Finder(storage, stemmer).find("apple")

    def test_snippets_are_attached_per_outcome(self, builder, results):
        contents = {
            DocumentIdentity("a"): "Apple pie. Nothing else.",
            DocumentIdentity("c"): "Only pears.",
        }

        builder.attach_snippets(results, lambda identities: {i: contents[i] for i in identities if i in contents})

        by_id = {item.id: item for item in results.items}
        assert by_id["a"].snippet == "<i>Apple</i> pie."
        assert by_id["a"].has_snippet
        assert by_id["b"].snippet == "B"
        assert not by_id["b"].has_snippet
        assert by_id["c"].snippet == "C"
        assert not by_id["c"].has_snippet

    def test_provider_is_called_once_with_the_page(self, builder, stemmer):
        storage = MemoryStorage()
        indexer = Indexer(storage, stemmer)
        for name in "abc":
            indexer.index(Indexable(id=name, title="", content="apple"))
        results = Finder(storage, stemmer).find(Query("apple", limit=2))
        calls = []

        def provide(identities):
            calls.append(list(identities))
            return {}

        builder.attach_snippets(results, provide)

        assert calls == [[item.identity for item in results.items]]
        assert len(calls[0]) == 2

    def test_empty_result_set_skips_the_provider(self, builder, stemmer):
        results = Finder(MemoryStorage(), stemmer).find("apple")
        calls = []

        builder.attach_snippets(results, lambda identities: calls.append(identities) or {})

        assert calls == []


def test_max_chars_must_be_positive(stemmer):
    with pytest.raises(ValueError):
        SnippetBuilder(stemmer, max_chars=0)


def test_from_settings():
    builder = SnippetBuilder.from_settings(Settings(snippet_max_chars=120))

    assert builder.max_chars == 120
