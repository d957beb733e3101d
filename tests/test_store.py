"""Tests for the cached collection file store."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from library_xml_api.cache import CollectionCache, ExpiryPolicy
from library_xml_api.codec import XmlCodec, encode
from library_xml_api.errors import ArgumentError, MalformedDocumentError
from library_xml_api.library import LibraryService
from library_xml_api.models import Books, Members
from library_xml_api.monitoring import get_monitor
from library_xml_api.store import CachedFileStore


def test_missing_file_loads_as_none(store):
    assert store.load("nonexistent.xml") is None
    assert store.load_or_empty("books.xml", Books) == Books()


def test_empty_file_loads_as_none(store, data_dir):
    (data_dir / "books.xml").write_text("  \n", encoding="utf-8")
    assert store.load("books.xml") is None


def test_save_then_load_returns_saved_collection(store, sample_books):
    store.save(sample_books, "books.xml")
    assert store.load("books.xml", Books) == sample_books


def test_save_invalidates_cached_copy(store, sample_books, make_book):
    store.save(Books(items=[make_book(id=9)]), "books.xml")
    assert len(store.load("books.xml")) == 1
    assert CachedFileStore.cache_key("books.xml") in store.cache

    store.save(sample_books, "books.xml")

    assert CachedFileStore.cache_key("books.xml") not in store.cache
    assert store.load("books.xml") == sample_books


def test_load_returns_independent_copies(store, sample_books, make_book):
    store.save(sample_books, "books.xml")
    loaded = store.load("books.xml")
    loaded.items.append(make_book(id=3))
    loaded.items[0].title = "Changed"

    again = store.load("books.xml")
    assert len(again) == 2
    assert again.find(1).title == "Dune"


def test_cached_value_is_served_until_it_expires(data_dir, clock, sample_books, make_book):
    cache = CollectionCache(ExpiryPolicy(sliding_seconds=600, absolute_seconds=3600), clock=clock)
    store = CachedFileStore(data_dir, cache=cache)
    store.save(sample_books, "books.xml")
    assert len(store.load("books.xml")) == 2

    # Written behind the store's back.
    (data_dir / "books.xml").write_text(encode(Books(items=[make_book(id=5)])), encoding="utf-8")

    clock.advance(599)
    assert len(store.load("books.xml")) == 2
    clock.advance(600)
    assert store.load("books.xml").find(5) is not None


def test_save_is_atomic_and_leaves_no_temp_file(store, data_dir, sample_books):
    store.save(sample_books, "books.xml")
    assert (data_dir / "books.xml").read_text(encoding="utf-8").startswith("<?xml")
    assert not list(data_dir.glob(".*.tmp"))


def test_malformed_file_raises(store, data_dir):
    (data_dir / "books.xml").write_text("<Books><Book Id='1'>", encoding="utf-8")
    with pytest.raises(MalformedDocumentError):
        store.load("books.xml")


def test_expected_type_is_enforced(store, sample_books):
    store.save(sample_books, "books.xml")
    with pytest.raises(MalformedDocumentError):
        store.load("books.xml", Members)


@pytest.mark.parametrize("name", ["", "   ", "../books.xml", "sub/books.xml", ".."])
def test_unsafe_file_names_are_rejected(store, name):
    with pytest.raises(ArgumentError):
        store.load(name)
    with pytest.raises(ArgumentError):
        store.save(Books(), name)


def test_store_records_file_activity(store, sample_books):
    store.save(sample_books, "books.xml")
    store.load("books.xml")
    store.load("books.xml")

    files = get_monitor().get_cache_analytics()["files"]
    assert files["saves"] == {"books.xml": 1}
    assert files["loads"] == {"books.xml": 1}


def test_lock_is_reentrant(store):
    with store.lock("books.xml", "borrowings.xml"):
        with store.lock("books.xml"):
            pass
    with pytest.raises(ArgumentError):
        with store.lock("../books.xml"):
            pass


class PausingCodec(XmlCodec):
    """Codec whose decode, in one named thread, finishes and then waits to be released."""

    def __init__(self, thread_name):
        super().__init__()
        self.thread_name = thread_name
        self.entered = threading.Event()
        self.release = threading.Event()

    def decode(self, xml_text, expected=None):
        collection = super().decode(xml_text, expected)
        if threading.current_thread().name == self.thread_name:
            self.entered.set()
            self.release.wait(timeout=10)
        return collection


def test_slow_reader_cannot_cache_data_older_than_a_save(settings, validator, today, make_book):
    """A decode of the old file must not land in the cache after a newer save."""
    codec = PausingCodec("slow-reader")
    store = CachedFileStore(settings, codec=codec)
    library = LibraryService(store, validator, settings=settings, today=today)
    library.create_book(make_book(title="Dune"))

    reader = threading.Thread(target=library.list_books, name="slow-reader")
    reader.start()
    assert codec.entered.wait(timeout=5)

    writer = threading.Thread(target=library.create_book, args=(make_book(title="Second"),))
    writer.start()
    writer.join(timeout=0.2)
    # The writer waits for the reader's file lock.
    assert writer.is_alive()

    codec.release.set()
    reader.join(timeout=5)
    writer.join(timeout=5)
    assert not writer.is_alive()

    assert [b.title for b in library.list_books()] == ["Dune", "Second"]
    library.create_book(make_book(title="Third"))
    assert [b.title for b in library.list_books()] == ["Dune", "Second", "Third"]


def test_concurrent_creates_get_distinct_ids(library, store, make_book):
    """Writers in parallel threads never reuse an id or drop a record."""
    count = 8
    with ThreadPoolExecutor(max_workers=count) as pool:
        created = list(pool.map(lambda i: library.create_book(make_book(title=f"Book {i}")), range(count)))

    expected_ids = list(range(1, count + 1))
    assert sorted(book.id for book in created) == expected_ids

    on_disk = CachedFileStore(store.data_dir).load("books.xml", Books)
    assert sorted(book.id for book in on_disk) == expected_ids
    assert {book.title for book in on_disk} == {f"Book {i}" for i in range(count)}
