"""Shared fixtures: a fresh data root with the bundled schemas per test."""

from datetime import date

import pytest

from library_xml_api.codec import XmlCodec
from library_xml_api.config import Settings, init_data_dir
from library_xml_api.library import LibraryService
from library_xml_api.models import Book, Books, Member
from library_xml_api.monitoring import get_monitor
from library_xml_api.registry import SchemaRegistry
from library_xml_api.store import CachedFileStore
from library_xml_api.transform import TransformEngine
from library_xml_api.validation import XmlValidator


class Today:
    """Settable date source for the service layer."""

    def __init__(self, value: date):
        self.value = value

    def __call__(self) -> date:
        return self.value


class FakeClock:
    """Monotonic clock the cache tests can step by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_monitor():
    get_monitor().reset_metrics()
    yield


@pytest.fixture
def data_dir(tmp_path):
    root = tmp_path / "Data"
    init_data_dir(root)
    return root


@pytest.fixture
def settings(data_dir):
    return Settings(data_dir=data_dir)


@pytest.fixture
def registry(settings):
    return SchemaRegistry(settings)


@pytest.fixture
def validator(registry):
    return XmlValidator(registry)


@pytest.fixture
def codec():
    return XmlCodec()


@pytest.fixture
def store(settings):
    return CachedFileStore(settings)


@pytest.fixture
def engine(settings, validator):
    return TransformEngine(settings, validator)


@pytest.fixture
def today():
    return Today(date(2024, 3, 1))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def library(store, validator, engine, settings, today):
    return LibraryService(store, validator, engine, settings, today=today)


@pytest.fixture
def make_book():
    def _make(**overrides):
        values = dict(
            isbn="978-0-441-17271-9",
            title="Dune",
            author="Frank Herbert",
            publisher="Chilton Books",
            publication_year=1965,
            genre="Science Fiction",
            available_copies=2,
            total_copies=2,
        )
        values.update(overrides)
        return Book(**values)

    return _make


@pytest.fixture
def make_member():
    def _make(**overrides):
        values = dict(
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.org",
            phone_number="555-0100",
            address="12 Analytical Row",
        )
        values.update(overrides)
        return Member(**values)

    return _make


@pytest.fixture
def sample_books(make_book):
    return Books(
        items=[
            make_book(id=1),
            make_book(
                id=2,
                isbn="0-306-40615-2",
                title="Test Book",
                author="Test Author",
                publisher="",
                genre="Testing",
                available_copies=0,
                total_copies=1,
            ),
        ]
    )
