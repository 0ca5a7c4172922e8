"""End-to-end search scenarios over a small bilingual corpus.

Every scenario runs on each bundled backend. The file backend is read back
from a fresh ``FileStorage`` after ``save()``; the SQLite backend starts from
an empty database and is bootstrapped through auto-erase.
"""

import threading

import pytest

from site_search.exceptions import UninitializedStorageError
from site_search.search.finder import Finder
from site_search.search.indexer import Indexer
from site_search.search.models import DocumentIdentity, Indexable, Query
from site_search.search.snippet import SnippetBuilder
from site_search.search.sqlite_storage import SqliteStorage
from site_search.search.storage import FileStorage, MemoryStorage


ID_1_10 = DocumentIdentity("id_1", 10)
ID_1_20 = DocumentIdentity("id_1", 20)
ID_2 = DocumentIdentity("id_2", 20)
ID_3 = DocumentIdentity("id_3", 20)


@pytest.fixture(params=["memory", "file", "sqlite"])
def index(request, tmp_path, corpus, stemmer):
    """Index the corpus and return the storage the queries should read from."""
    if request.param == "memory":
        writer = MemoryStorage()
    elif request.param == "file":
        writer = FileStorage(tmp_path / "index.json")
    else:
        writer = SqliteStorage(tmp_path / "index.sqlite", table_prefix="site_")

    indexer = Indexer(writer, stemmer, auto_erase=True)
    for indexable in corpus:
        indexer.index(indexable)

    reader = writer
    if isinstance(writer, FileStorage):
        writer.save()
        reader = FileStorage(writer.path)
        assert reader.load()
    yield reader
    if isinstance(writer, SqliteStorage):
        writer.close()


@pytest.fixture
def finder(index, stemmer):
    return Finder(index, stemmer)


@pytest.fixture
def snippets(stemmer):
    return SnippetBuilder(stemmer)


def relevance(results):
    return results.get_sorted_relevance_by_external_id()


class TestRanking:
    def test_keyword_title_and_content_matches(self, finder):
        results = finder.find("content")

        assert list(relevance(results)) == [ID_2, ID_1_20, ID_1_10]
        assert relevance(results) == {ID_2: 30.0, ID_1_20: pytest.approx(1.5), ID_1_10: 1.0}

    def test_reindexed_document_replaces_old_version(self, finder, index):
        assert finder.find("make").is_empty()
        assert [item.identity for item in finder.find("changed").items] == [ID_1_10]
        assert index.get_toc_size() == 4

    def test_relevance_override_resorts(self, finder):
        results = finder.find("content")

        results.set_relevance_ratio(ID_1_10, 3.14)
        assert list(relevance(results)) == [ID_2, ID_1_10, ID_1_20]

        results.set_relevance_ratio(ID_1_10, 100)
        assert list(relevance(results)) == [ID_1_10, ID_2, ID_1_20]

    def test_title_match_is_highlighted(self, finder):
        [item] = finder.find("title").items

        assert item.identity == ID_1_10
        assert item.highlighted_title == "Test page <i>title</i>"
        assert item.url == "url1"

    def test_instance_filter(self, finder):
        only_10 = finder.find(Query("content", instance_id=10))
        only_20 = finder.find(Query("content", instance_id=20))

        assert [item.identity for item in only_10.items] == [ID_1_10]
        assert [item.identity for item in only_20.items] == [ID_2, ID_1_20]

    def test_description_is_not_searchable(self, finder):
        assert finder.find("snippets").is_empty()

    @pytest.mark.parametrize("text", ["русский", "русскому", "РУССКИЙ"])
    def test_russian_word_forms_match_the_title(self, finder, text):
        assert relevance(finder.find(text)) == {ID_3: 20.0}

    def test_phrase_neighbours_add_bonus(self, finder):
        # учитель (1) + не twice (1.5) + должен (1) + two neighbour bonuses
        assert relevance(finder.find("учитель не должен")) == {ID_3: pytest.approx(5.5)}

    @pytest.mark.parametrize("text", ["", "'", "  ", "?!"])
    def test_empty_queries(self, finder, text):
        assert finder.find(text).is_empty()

    def test_multiword_keyword_phrase(self, finder):
        results = finder.find("multiple keywords")

        assert [item.identity for item in results.items] == [ID_1_10]
        assert relevance(results)[ID_1_10] == pytest.approx(10.0 + 10.0 + 30.0 + 10.0)

    def test_find_by_title(self, finder):
        assert [entry.identity for entry in finder.find_by_title("красным")] == [ID_3]


class TestSnippets:
    def test_snippets_for_english_documents(self, finder, snippets, content_provider):
        results = finder.find("content")

        snippets.attach_snippets(results, content_provider)

        by_identity = {item.identity: item for item in results.items}
        assert by_identity[ID_1_10].snippet == "I have changed the <i>content</i>."
        assert by_identity[ID_1_20].snippet == 'Word "<i>content</i>" is present here. Twice: <i>content</i>.'
        assert not by_identity[ID_2].has_snippet
        assert by_identity[ID_2].snippet == ""
        assert len(content_provider.calls) == 1

    def test_entities_are_preserved(self, finder, snippets, content_provider):
        results = finder.find("сущность plus")

        snippets.attach_snippets(results, content_provider)

        [item] = results.items
        assert item.snippet == (
            "Тут есть тонкость - нужно проверить, как происходит экранировка в <i>сущностях</i> вроде &plus;. "
            'Для этого нужно включить в текст само сочетание букв "<i>plus</i>".'
        )

    def test_hyphenated_words_match_by_part(self, finder, snippets, content_provider):
        results = finder.find("эпл")

        snippets.attach_snippets(results, content_provider)

        assert results.items[0].snippet == "Например, красно-черный, <i>эпл</i>-вотчем, и другие интересные комбинации."

    def test_custom_template_applies_to_snippet_and_title(self, finder, snippets, content_provider):
        finder.set_highlight_template("<b>{}</b>")
        results = finder.find("красным заголовком")

        snippets.attach_snippets(results, content_provider)

        [item] = results.items
        assert item.snippet == "Например, <b>красно</b>-черный, эпл-вотчем, и другие интересные комбинации."
        assert item.highlighted_title == "Русский текст. <b>Красным</b> <b>заголовком</b>"

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("ціна", "Например, в украинском есть слово <b>ціна</b>."),
            ("7.0", "Я не помню Windows 3.1, но помню Turbo Pascal <b>7.0</b>."),
            ("7", "Надо отдельно посмотреть, что ищется по одной цифре <b>7</b>..."),
            ("Windows 3", "Я не помню <b>Windows</b> 3.1, но помню Turbo Pascal 7.0."),
            ("Windows 3.1", "Я не помню <b>Windows</b> <b>3.1</b>, но помню Turbo Pascal 7.0."),
        ],
    )
    def test_numbers_and_foreign_words(self, finder, snippets, content_provider, text, expected):
        finder.set_highlight_template("<b>{}</b>")
        results = finder.find(text)

        snippets.attach_snippets(results, content_provider)

        assert [item.identity for item in results.items] == [ID_3]
        assert results.items[0].snippet == expected


class TestLifecycle:
    def test_remove_by_id(self, index, stemmer):
        Indexer(index, stemmer).remove_by_id("id_1", 20)
        finder = Finder(index, stemmer)

        assert list(relevance(finder.find("content"))) == [ID_2, ID_1_10]


def test_fresh_sqlite_database_needs_auto_erase(tmp_path, corpus, stemmer):
    storage = SqliteStorage(tmp_path / "fresh.sqlite")
    indexer = Indexer(storage, stemmer)
    try:
        assert not storage.is_initialized()
        with pytest.raises(UninitializedStorageError):
            indexer.index(corpus[0])

        indexer.set_auto_erase(True)
        indexer.index(corpus[0])

        assert [item.identity for item in Finder(storage, stemmer).find("title").items] == [ID_1_10]
    finally:
        storage.close()


def test_file_storage_reload_sees_new_documents(tmp_path, corpus, stemmer):
    path = tmp_path / "index.json"
    writer = FileStorage(path)
    Indexer(writer, stemmer, auto_erase=True).index(corpus[0])
    writer.save()
    reader = FileStorage(path)
    reader.load()
    finder = Finder(reader, stemmer)
    assert finder.find("русский").is_empty()

    Indexer(writer, stemmer).index(corpus[2])
    writer.save()
    reader.reload()

    assert [item.identity for item in finder.find("русский").items] == [ID_3]


def test_readers_never_see_half_written_documents(stemmer):
    storage = MemoryStorage()
    indexer = Indexer(storage, stemmer)
    finder = Finder(storage, stemmer)
    indexer.index(Indexable(id="doc", title="alpha", content="alpha"))
    stop = threading.Event()
    failures = []

    def write():
        for round_number in range(200):
            word = "alpha" if round_number % 2 else "beta"
            indexer.index(Indexable(id="doc", title=word, content=word))
        stop.set()

    def read():
        while not stop.is_set():
            for item in finder.find("alpha").items:
                if item.relevance != 21.0:
                    failures.append(item.relevance)

    threads = [threading.Thread(target=write), threading.Thread(target=read)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
