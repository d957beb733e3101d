"""Tests for the collection cache and its expiry windows."""

import pytest

from library_xml_api.cache import CacheEntry, CollectionCache, ExpiryPolicy
from library_xml_api.monitoring import get_monitor


def test_cache_entry_expiration():
    """Test both expiry windows on a bare entry."""
    policy = ExpiryPolicy(sliding_seconds=10, absolute_seconds=30)
    entry = CacheEntry(data="test", created_at=0, last_access=0)

    assert not entry.is_expired(9.9, policy)
    assert entry.is_expired(10, policy)

    entry.last_access = 25
    assert not entry.is_expired(29, policy)
    assert entry.is_expired(30, policy)


def test_policy_defaults_and_validation():
    """Test default windows of 10 minutes sliding and 1 hour absolute."""
    policy = ExpiryPolicy()
    assert policy.sliding_seconds == 600
    assert policy.absolute_seconds == 3600

    with pytest.raises(ValueError):
        ExpiryPolicy(sliding_seconds=0)


def test_collection_cache_basic_operations(clock):
    """Test set, get, invalidate and clear."""
    cache = CollectionCache(clock=clock)

    cache.set("xml_books.xml", "books")
    assert cache.get("xml_books.xml") == "books"
    assert "xml_books.xml" in cache
    assert cache.get("nonexistent") is None

    assert cache.invalidate("xml_books.xml") is True
    assert cache.invalidate("xml_books.xml") is False
    assert cache.get("xml_books.xml") is None

    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.keys() == ["a", "b"]
    cache.clear()
    assert cache.keys() == []


def test_sliding_window_is_refreshed_by_reads(clock):
    """Test that each hit restarts the sliding window."""
    cache = CollectionCache(ExpiryPolicy(sliding_seconds=10, absolute_seconds=100), clock=clock)
    cache.set("key", "value")

    clock.advance(9)
    assert cache.get("key") == "value"
    clock.advance(9)
    assert cache.get("key") == "value"
    clock.advance(11)
    assert cache.get("key") is None
    assert "key" not in cache.keys()


def test_absolute_window_caps_lifetime(clock):
    """Test that frequent reads do not keep an entry past its absolute lifetime."""
    cache = CollectionCache(ExpiryPolicy(sliding_seconds=10, absolute_seconds=25), clock=clock)
    cache.set("key", "value")

    for _ in range(3):
        clock.advance(8)
        assert cache.get("key") == "value"

    clock.advance(1)
    assert cache.get("key") is None


def test_set_restarts_both_windows(clock):
    """Test that replacing a value resets its creation time."""
    cache = CollectionCache(ExpiryPolicy(sliding_seconds=10, absolute_seconds=15), clock=clock)
    cache.set("key", "old")
    clock.advance(9)
    cache.set("key", "new")
    clock.advance(9)

    assert cache.get("key") == "new"


def test_cache_reports_to_monitor(clock):
    """Test hit, miss and eviction counters."""
    cache = CollectionCache(ExpiryPolicy(sliding_seconds=5, absolute_seconds=60), clock=clock)
    cache.set("key", "value")
    cache.get("key")
    cache.get("missing")
    clock.advance(6)
    cache.get("key")

    usage = get_monitor().get_cache_analytics()["usage"]
    assert usage["cache_hits"] == 1
    assert usage["cache_misses"] == 2
    assert usage["evictions"] == 1
    assert usage["cache_size_entries"] == 0


def test_cache_without_monitoring(clock):
    """Test that a cache can run detached from the global monitor."""
    cache = CollectionCache(clock=clock, enable_monitoring=False)
    cache.set("key", "value")
    cache.get("key")

    assert get_monitor().get_cache_analytics()["usage"]["cache_hits"] == 0
    stats = cache.get_cache_stats()
    assert stats["cache_size"] == 1
    assert stats["keys"] == ["key"]
    assert stats["monitoring_enabled"] is False
