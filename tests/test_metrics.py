"""
Tests for the metrics collector and per-session query counting.
"""

import threading

from sqlalchemy import select

from sleepfeed.metrics import MetricsCollector, count_queries
from sleepfeed.models import User


class TestMetricsCollector:
    def test_percentiles_need_ten_samples(self):
        metrics = MetricsCollector()
        for ms in range(9):
            metrics.record_latency("GET /x", float(ms))
        assert metrics.get_percentile("GET /x", 50) is None

        metrics.record_latency("GET /x", 9.0)
        assert metrics.get_percentile("GET /x", 50) == 5.0
        assert metrics.get_percentile("GET /x", 99) == 9.0

    def test_window_is_bounded(self):
        metrics = MetricsCollector(window_size=5)
        for ms in range(20):
            metrics.record_latency("GET /x", float(ms))
        assert list(metrics.latencies["GET /x"]) == [15.0, 16.0, 17.0, 18.0, 19.0]
        assert metrics.request_counts["GET /x"] == 20

    def test_cache_hit_rate(self):
        metrics = MetricsCollector()
        assert metrics.get_cache_hit_rate() == 0.0
        metrics.record_cache_hit()
        metrics.record_cache_hit()
        metrics.record_cache_hit()
        metrics.record_cache_miss()
        assert metrics.get_cache_hit_rate() == 75.0

    def test_error_rate(self):
        metrics = MetricsCollector()
        for _ in range(4):
            metrics.record_latency("POST /y", 1.0)
        metrics.record_error("POST /y")
        assert metrics.get_error_rate("POST /y") == 25.0

    def test_summary(self):
        metrics = MetricsCollector()
        metrics.record_latency("GET /x", 10.0)
        metrics.record_queries("GET /x", 3)
        metrics.record_queries("GET /x", 5)
        metrics.record_cache_error()

        summary = metrics.get_summary()

        endpoint = summary["endpoints"]["GET /x"]
        assert endpoint["total_requests"] == 1
        assert endpoint["latency_avg_ms"] == 10.0
        assert endpoint["queries_avg"] == 4.0
        assert endpoint["queries_max"] == 5
        assert summary["cache"]["total_errors"] == 1

    def test_summary_while_recording(self):
        metrics = MetricsCollector(window_size=50)
        stop = threading.Event()

        def writer():
            i = 0
            while not stop.is_set():
                metrics.record_latency(f"GET /x{i % 5}", float(i % 100))
                metrics.record_queries(f"GET /x{i % 5}", i % 7)
                i += 1

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            for _ in range(300):
                summary = metrics.get_summary()
                for endpoint in summary["endpoints"]:
                    metrics.get_percentile(endpoint, 95)
        finally:
            stop.set()
            thread.join()

        assert set(metrics.get_summary()["endpoints"]) <= {f"GET /x{i}" for i in range(5)}

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.record_latency("GET /x", 1.0)
        metrics.record_cache_hit()
        metrics.reset()
        assert metrics.get_summary()["endpoints"] == {}
        assert metrics.cache_hits == 0


class TestCountQueries:
    def test_counts_statements_in_block(self, db, make_user):
        make_user("alice")

        with count_queries(db) as counter:
            db.scalars(select(User)).all()
            db.scalars(select(User).where(User.name == "alice")).all()

        assert counter.count == 2
        assert "FROM users" in counter.statements[0]

    def test_listener_removed_after_block(self, db):
        with count_queries(db) as counter:
            pass
        db.scalars(select(User)).all()
        assert counter.count == 0

    def test_sessions_counted_separately(self, session_factory):
        first, second = session_factory(), session_factory()
        try:
            with count_queries(first) as counter:
                second.scalars(select(User)).all()
            assert counter.count == 0
        finally:
            first.close()
            second.close()
