"""Shared test fixtures and configuration."""

from datetime import datetime
import os
from pathlib import Path

import pytest

from site_search.search.models import DocumentIdentity, Indexable
from site_search.search.sqlite_storage import SqliteStorage
from site_search.search.stemmers import create_stemmer
from site_search.search.storage import FileStorage, MemoryStorage


# Drop any SITE_SEARCH_* values leaking in from the developer's shell
for _key in [key for key in os.environ if key.upper().startswith("SITE_SEARCH_")]:
    del os.environ[_key]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Isolate tests from SITE_SEARCH_* variables and any local .env file."""
    for key in list(os.environ):
        if key.upper().startswith("SITE_SEARCH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(scope="session")
def stemmer():
    """Russian stemmer with the English stemmer as fallback."""
    return create_stemmer(["russian", "english"])


CORPUS_CONTENT_RU = (
    "<p>Для проверки работы нужно написать побольше слов. В 1,7 раз больше. Вот еще одно предложение.</p>"
    "<p>Тут есть тонкость - нужно проверить, как происходит экранировка в сущностях вроде &plus;. "
    'Для этого нужно включить в текст само сочетание букв "plus".</p>'
    "<p>Еще одна особенность - наличие слов с дефисом. Например, красно-черный, эпл-вотчем, и другие "
    "интересные комбинации. Встречаются и другие знаки препинания, например, цифры. Я не помню Windows 3.1, "
    "но помню Turbo Pascal 7.0. Надо отдельно посмотреть, что ищется по одной цифре 7... "
    "Учитель не должен допускать такого...</p>"
    "<p>А еще текст бывает на других языках. Например, в украинском есть слово ціна.</p>"
)


@pytest.fixture
def corpus():
    """Three documents; two share the id ``id_1`` under different instances and one is indexed twice."""
    return [
        Indexable(
            id="id_1",
            title="Test page title",
            content="This is the first page to be indexed. I have to make up a content.",
            instance_id=10,
            keywords="singlekeyword, multiple keywords",
            description="Description can be used in snippets",
            date=datetime(2016, 8, 24),
            url="url1",
        ),
        Indexable(
            id="id_2",
            title="To be continued...",
            content="This is the second page to be indexed. Let's compose something new.",
            instance_id=20,
            keywords="content, ",
            date=datetime(2016, 8, 20),
            url="any string",
        ),
        Indexable(
            id="id_3",
            title="Русский текст. Красным заголовком",
            content=CORPUS_CONTENT_RU,
            instance_id=20,
            keywords="ключевые слова",
            date=datetime(2016, 8, 22),
            url="/якобы.урл",
        ),
        Indexable(
            id="id_1",
            title="Test page title",
            content="This is the first page to be indexed. I have changed the content.",
            instance_id=10,
            keywords="singlekeyword, multiple keywords",
            description="Description can be used in snippets",
            date=datetime(2016, 8, 24),
            url="url1",
        ),
        Indexable(
            id="id_1",
            title="Another instance",
            content='The same id but another instance. Word "content" is present here. Twice: content.',
            instance_id=20,
        ),
    ]


@pytest.fixture
def content_provider(corpus):
    """Serve the latest indexed content per identity and record every call."""
    latest = {indexable.identity: indexable.content for indexable in corpus}
    calls: list[list[DocumentIdentity]] = []

    def provide(identities):
        calls.append(list(identities))
        return {identity: latest[identity] for identity in identities if identity in latest}

    provide.calls = calls
    return provide


def make_storage(kind: str, directory: Path):
    if kind == "memory":
        return MemoryStorage()
    if kind == "file":
        storage = FileStorage(directory / "index.json")
        storage.erase()
        return storage
    storage = SqliteStorage(directory / "index.sqlite", table_prefix="test_")
    storage.erase()
    return storage


@pytest.fixture(params=["memory", "file", "sqlite"])
def storage(request, tmp_path):
    """An initialized, empty storage of every bundled backend."""
    backend = make_storage(request.param, tmp_path)
    yield backend
    if isinstance(backend, SqliteStorage):
        backend.close()


def pytest_collection_modifyitems(config, items):
    """Mark tests by directory: tests/unit -> unit, tests/integration -> integration."""
    for item in items:
        parts = Path(str(item.fspath)).parts
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)
        elif "integration" in parts:
            item.add_marker(pytest.mark.integration)
