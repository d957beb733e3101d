"""Time-expiring in-memory cache for decoded collections.

One :class:`CollectionCache` is owned by each
:class:`~library_xml_api.store.CachedFileStore`; there is no module-level
cache. Entries expire on two clocks:

    * sliding: an entry not read for ``sliding_seconds`` is dropped; each
      successful ``get`` restarts this window;
    * absolute: an entry never outlives ``absolute_seconds`` from the
      moment it was stored, however often it is read.

Expiry is checked lazily on ``get``. There is no capacity bound: the
store only ever holds a handful of collection files.

Example::

    from library_xml_api.cache import CollectionCache, ExpiryPolicy

    cache = CollectionCache(ExpiryPolicy(sliding_seconds=5, absolute_seconds=60))
    cache.set("xml_books.xml", books)
    cache.get("xml_books.xml")     # -> books
    cache.invalidate("xml_books.xml")
    cache.get("xml_books.xml")     # -> None

Tests pass a fake ``clock`` to step time without sleeping.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover - for type checkers only
    from .monitoring import PerformanceMonitor  # noqa: F401


@dataclass(frozen=True)
class ExpiryPolicy:
    """Sliding window capped by an absolute lifetime, both in seconds."""

    sliding_seconds: float = 600.0
    absolute_seconds: float = 3600.0

    def __post_init__(self) -> None:
        if self.sliding_seconds <= 0 or self.absolute_seconds <= 0:
            raise ValueError("Expiry durations must be positive")


@dataclass
class CacheEntry:
    """Cached value with the timestamps both expiry rules need."""

    data: Any
    created_at: float
    last_access: float

    def is_expired(self, now: float, policy: ExpiryPolicy) -> bool:
        """Check if the entry outlived either the sliding or the absolute window."""
        if now - self.created_at >= policy.absolute_seconds:
            return True
        return now - self.last_access >= policy.sliding_seconds


class CollectionCache:
    """Thread-safe key/value cache with sliding and absolute expiry.

    Args:
        policy: Expiry windows; defaults to 10 minutes sliding, 1 hour absolute.
        clock: Monotonic time source in seconds.
        enable_monitoring: Forward hit/miss/eviction events to the
            process-wide :class:`~library_xml_api.monitoring.PerformanceMonitor`.
    """

    def __init__(
        self,
        policy: Optional[ExpiryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        enable_monitoring: bool = True,
    ) -> None:
        self.policy = policy or ExpiryPolicy()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self.enable_monitoring = enable_monitoring

        # Import monitor lazily to avoid circular imports
        self._monitor = None
        if enable_monitoring:
            from .monitoring import get_monitor

            self._monitor = get_monitor()

    def get(self, key: str) -> Optional[Any]:
        """Return the value for ``key`` or None if absent or expired.

        A hit restarts the sliding window. An expired entry is removed.
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None:
                if self._monitor:
                    self._monitor.record_cache_miss()
                return None

            if entry.is_expired(now, self.policy):
                del self._entries[key]
                if self._monitor:
                    self._monitor.record_cache_miss()
                    self._monitor.record_cache_eviction()
                    self._monitor.update_cache_size(len(self._entries))
                return None

            entry.last_access = now
            if self._monitor:
                self._monitor.record_cache_hit()
            return entry.data

    def set(self, key: str, data: Any) -> None:
        """Insert or replace ``key``; both expiry windows start now."""
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(data=data, created_at=now, last_access=now)
            if self._monitor:
                self._monitor.update_cache_size(len(self._entries))

    def invalidate(self, key: str) -> bool:
        """Remove ``key``; returns whether an entry was present."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed and self._monitor:
                self._monitor.record_cache_eviction()
                self._monitor.update_cache_size(len(self._entries))
            return removed

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._entries.clear()
            if self._monitor:
                self._monitor.update_cache_size(0)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock(), self.policy)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get current cache statistics."""
        with self._lock:
            return {
                "cache_size": len(self._entries),
                "keys": sorted(self._entries),
                "sliding_seconds": self.policy.sliding_seconds,
                "absolute_seconds": self.policy.absolute_seconds,
                "monitoring_enabled": self.enable_monitoring,
            }
