"""
Observability metrics for sleepfeed.

Tracks:
- Latency percentiles (p50, p95, p99) per endpoint
- Cache hit rates
- Request counts and error rates per endpoint
- ORM statement counts per request (N+1 detection)

The collector is created by the application factory and injected where it
is needed; nothing here is global or thread-local.
"""

import statistics
import threading
from collections import defaultdict, deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session


class MetricsCollector:
    """
    In-memory metrics collector for observability.

    For production, this would integrate with Prometheus/StatsD.
    """

    def __init__(self, window_size: int = 1000):
        """
        Initialize metrics collector.

        Args:
            window_size: Number of recent samples to keep for percentiles
        """
        self.window_size = window_size
        self._lock = threading.Lock()

        # Latency tracking (sliding window)
        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        # Cache metrics
        self.cache_hits = 0
        self.cache_misses = 0
        self.cache_errors = 0

        # Request counters
        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)

        # ORM statements per endpoint (sliding window)
        self.query_counts: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        self.start_time = datetime.now(timezone.utc)
        self.last_reset = self.start_time

    def record_latency(self, endpoint: str, latency_ms: float):
        """Record a latency sample for an endpoint."""
        with self._lock:
            self.latencies[endpoint].append(latency_ms)
            self.request_counts[endpoint] += 1

    def record_cache_hit(self):
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self):
        with self._lock:
            self.cache_misses += 1

    def record_cache_error(self):
        with self._lock:
            self.cache_errors += 1

    def record_error(self, endpoint: str):
        """Record an error for an endpoint."""
        with self._lock:
            self.error_counts[endpoint] += 1

    def record_queries(self, endpoint: str, count: int):
        """Record how many ORM statements one request executed."""
        with self._lock:
            self.query_counts[endpoint].append(count)

    def get_percentile(self, endpoint: str, percentile: float) -> Optional[float]:
        """
        Get a latency percentile for an endpoint.

        Returns:
            Latency in ms, or None if insufficient data
        """
        with self._lock:
            values = list(self.latencies.get(endpoint, ()))
        return _percentile(sorted(values), percentile)

    def get_cache_hit_rate(self) -> float:
        """Get the cache hit rate as a percentage."""
        with self._lock:
            return _rate(self.cache_hits, self.cache_hits + self.cache_misses)

    def get_error_rate(self, endpoint: str) -> float:
        """Get the error rate for an endpoint as a percentage."""
        with self._lock:
            return _rate(self.error_counts.get(endpoint, 0), self.request_counts.get(endpoint, 0))

    def get_summary(self) -> Dict:
        """
        Get a summary of all metrics.

        Counters and sample windows are copied under the lock; the
        arithmetic runs on the copies so recorders are never blocked by it.

        Returns:
            Dict with metrics summary for all endpoints
        """
        with self._lock:
            cache_hits, cache_misses, cache_errors = self.cache_hits, self.cache_misses, self.cache_errors
            request_counts = dict(self.request_counts)
            error_counts = dict(self.error_counts)
            latencies = {endpoint: list(samples) for endpoint, samples in self.latencies.items()}
            query_counts = {endpoint: list(samples) for endpoint, samples in self.query_counts.items()}

        uptime_seconds = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        summary = {
            "uptime_seconds": uptime_seconds,
            "cache": {
                "hit_rate_pct": round(_rate(cache_hits, cache_hits + cache_misses), 2),
                "total_hits": cache_hits,
                "total_misses": cache_misses,
                "total_errors": cache_errors,
            },
            "endpoints": {}
        }

        for endpoint, total_requests in request_counts.items():
            errors = error_counts.get(endpoint, 0)
            endpoint_metrics = {
                "total_requests": total_requests,
                "total_errors": errors,
                "error_rate_pct": round(_rate(errors, total_requests), 2),
            }

            samples = sorted(latencies.get(endpoint, ()))
            for pct in (50, 95, 99):
                value = _percentile(samples, pct)
                if value is not None:
                    endpoint_metrics[f"latency_p{pct}_ms"] = round(value, 2)

            if samples:
                endpoint_metrics["latency_avg_ms"] = round(statistics.mean(samples), 2)

            queries = query_counts.get(endpoint)
            if queries:
                endpoint_metrics["queries_avg"] = round(statistics.mean(queries), 2)
                endpoint_metrics["queries_max"] = max(queries)

            summary["endpoints"][endpoint] = endpoint_metrics

        return summary

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.latencies.clear()
            self.cache_hits = 0
            self.cache_misses = 0
            self.cache_errors = 0
            self.request_counts.clear()
            self.error_counts.clear()
            self.query_counts.clear()
            self.last_reset = datetime.now(timezone.utc)


class QueryCounter:
    """Counts ORM statements executed through one Session."""

    def __init__(self):
        self.count = 0
        self.statements: List[str] = []

    def __call__(self, orm_execute_state):
        self.count += 1
        self.statements.append(str(orm_execute_state.statement))


@contextmanager
def count_queries(session: Session):
    """
    Count ORM statements (selects, lazy loads, bulk updates/deletes) run by
    `session` inside the block.

        with count_queries(db) as counter:
            service.feed(...)
        assert counter.count == 3
    """
    counter = QueryCounter()
    event.listen(session, "do_orm_execute", counter)
    try:
        yield counter
    finally:
        event.remove(session, "do_orm_execute", counter)


def _rate(part: int, total: int) -> float:
    return (part / total) * 100.0 if total else 0.0


def _percentile(sorted_values: List[float], percentile: float) -> Optional[float]:
    # Need at least 10 samples for meaningful percentiles
    if len(sorted_values) < 10:
        return None
    index = min(int(len(sorted_values) * (percentile / 100.0)), len(sorted_values) - 1)
    return sorted_values[index]
