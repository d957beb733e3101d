"""In-process metrics for the collection cache, the file store and the HTTP layer.

Components record small events here instead of aggregating on their own:

        * Collection cache: hits, misses, evictions, current entry count.
        * File store: disk loads and saves per collection file.
        * Validation: rejected writes per schema name.
        * Endpoints: latency and error rate per request path.

All mutation goes through one re-entrant lock; summaries are plain
dictionaries ready for JSON responses.

Example::

        from library_xml_api.monitoring import get_monitor
        monitor = get_monitor()
        monitor.record_endpoint_request("GET /api/books", response_time=0.012, status_code=200)
        monitor.get_performance_summary()["api"]["total_requests"]  # -> 1

Tests call :meth:`PerformanceMonitor.reset_metrics` for a clean baseline.
"""

from __future__ import annotations

import threading
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

RECENT_WINDOW = 100


@dataclass
class CacheMetrics:
    """Counters for the collection cache.

    Attributes:
        hits: Lookups answered from memory.
        misses: Lookups that fell through to disk (including expired entries).
        evictions: Entries dropped by expiry or by a save.
        cache_size: Entry count after the last change.
    """

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    cache_size: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.lookups if self.lookups else 0.0


@dataclass
class EndpointMetrics:
    """Latency and failures seen on one route."""

    calls: int = 0
    failures: int = 0
    seconds: float = 0.0
    last_seen: Optional[datetime] = None
    latencies: Deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_WINDOW))

    def observe(self, response_time: float, failed: bool, keep_latency: bool) -> None:
        self.calls += 1
        self.seconds += response_time
        self.last_seen = datetime.now()
        if failed:
            self.failures += 1
        if keep_latency:
            self.latencies.append(response_time)

    @property
    def mean_ms(self) -> float:
        return round(self.seconds / self.calls * 1000, 2) if self.calls else 0.0

    @property
    def failure_percent(self) -> float:
        return round(self.failures / self.calls * 100, 2) if self.calls else 0.0


class PerformanceMonitor:
    """Thread-safe recorder and query surface for runtime metrics.

    Args:
        enable_detailed_tracking: Keep a rolling window of per-route
            latencies in addition to the totals.
    """

    def __init__(self, enable_detailed_tracking: bool = True):
        self.enable_detailed_tracking = enable_detailed_tracking
        self._lock = threading.RLock()
        self._reset()

    def _reset(self) -> None:
        self.started = datetime.now()
        self.cache = CacheMetrics()
        self.endpoints: Dict[str, EndpointMetrics] = defaultdict(EndpointMetrics)
        self.file_loads: Counter = Counter()
        self.file_saves: Counter = Counter()
        self.validation_failures: Counter = Counter()
        self.failed_requests: Deque[Dict[str, Any]] = deque(maxlen=RECENT_WINDOW)

    # Cache events ------------------------------------------------------

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache.hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache.misses += 1

    def record_cache_eviction(self) -> None:
        with self._lock:
            self.cache.evictions += 1

    def update_cache_size(self, cache_size: int) -> None:
        with self._lock:
            self.cache.cache_size = cache_size

    # Store and validation events ---------------------------------------

    def record_file_load(self, file_name: str) -> None:
        """Count a collection file read from disk (a cache miss that found data)."""
        with self._lock:
            self.file_loads[file_name] += 1

    def record_file_save(self, file_name: str) -> None:
        with self._lock:
            self.file_saves[file_name] += 1

    def record_validation_failure(self, schema_name: str) -> None:
        with self._lock:
            self.validation_failures[schema_name] += 1

    # HTTP events -------------------------------------------------------

    def record_endpoint_request(self, endpoint: str, response_time: float, status_code: int = 200) -> None:
        """Record one handled request.

        Args:
            endpoint: ``"<METHOD> <path>"`` label.
            response_time: Handling time in seconds.
            status_code: HTTP status; 400 and above counts as a failure.
        """
        failed = status_code >= 400
        with self._lock:
            self.endpoints[endpoint].observe(response_time, failed, self.enable_detailed_tracking)
            if failed:
                self.failed_requests.append(
                    {"endpoint": endpoint, "status_code": status_code, "at": datetime.now().isoformat()}
                )

    # Summaries ---------------------------------------------------------

    def get_cache_analytics(self) -> Dict[str, Any]:
        """Return cache counters plus store and validation activity."""
        with self._lock:
            cache = self.cache
            return {
                "performance": {
                    "hit_rate_percent": round(cache.hit_rate * 100, 2),
                    "miss_rate_percent": round((1 - cache.hit_rate) * 100, 2) if cache.lookups else 0.0,
                },
                "usage": {
                    "total_requests": cache.lookups,
                    "cache_hits": cache.hits,
                    "cache_misses": cache.misses,
                    "evictions": cache.evictions,
                    "cache_size_entries": cache.cache_size,
                },
                "files": {"loads": dict(self.file_loads), "saves": dict(self.file_saves)},
                "validation_failures": dict(self.validation_failures),
            }

    def _busiest_endpoints(self, limit: int = 10) -> List[Dict[str, Any]]:
        ranked = sorted(self.endpoints.items(), key=lambda item: item[1].calls, reverse=True)
        return [
            {
                "endpoint": name,
                "requests": stats.calls,
                "avg_response_time_ms": stats.mean_ms,
                "error_rate": stats.failure_percent,
            }
            for name, stats in ranked[:limit]
        ]

    def get_performance_summary(self) -> Dict[str, Any]:
        """Return a consolidated snapshot of cache and API metrics."""
        with self._lock:
            now = datetime.now()
            recent = list(self.failed_requests)[-20:]
            return {
                "timestamp": now.isoformat(),
                "uptime_seconds": round((now - self.started).total_seconds(), 2),
                "cache": {
                    "hit_rate": round(self.cache.hit_rate * 100, 2),
                    "hits": self.cache.hits,
                    "misses": self.cache.misses,
                    "evictions": self.cache.evictions,
                    "cache_size": self.cache.cache_size,
                },
                "api": {
                    "total_requests": sum(stats.calls for stats in self.endpoints.values()),
                    "top_endpoints": self._busiest_endpoints(),
                },
                "errors": {
                    "recent_errors_by_status": dict(Counter(entry["status_code"] for entry in recent)),
                    "total_recent_errors": len(self.failed_requests),
                },
            }

    def reset_metrics(self) -> None:
        """Reset all counters (tests and manual re-baselining)."""
        with self._lock:
            self._reset()


_monitor: Optional[PerformanceMonitor] = None
_monitor_guard = threading.Lock()


def get_monitor() -> PerformanceMonitor:
    """Return the process-wide monitor, creating it on first use."""
    global _monitor
    with _monitor_guard:
        if _monitor is None:
            _monitor = PerformanceMonitor()
        return _monitor
