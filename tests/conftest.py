"""Pytest configuration for sleepfeed tests."""

import fnmatch
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from sleepfeed.cache import CacheClient
from sleepfeed.config import Settings
from sleepfeed.database import Base, make_session_factory
from sleepfeed.main import create_app
from sleepfeed.metrics import MetricsCollector
from sleepfeed.models import Follow, SleepRecord, User

# Fixed "now" for service-level tests that take a clock
NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


# ---------------------------------------------------------------------------
# Redis stand-in: a MagicMock whose core commands are backed by a dict, so
# tests can both inspect calls and assert on what ended up "in Redis".
# ---------------------------------------------------------------------------

def make_fake_redis() -> MagicMock:
    store = {}
    ttls = {}
    client = MagicMock(name="redis")

    def setex(key, ttl, value):
        store[key] = value
        ttls[key] = ttl
        return True

    def delete(*keys):
        removed = 0
        for key in keys:
            if key in store:
                del store[key]
                ttls.pop(key, None)
                removed += 1
        return removed

    def scan_iter(match="*", count=None):
        return iter([key for key in list(store) if fnmatch.fnmatchcase(key, match)])

    def flushdb():
        store.clear()
        ttls.clear()
        return True

    client.get.side_effect = store.get
    client.setex.side_effect = setex
    client.delete.side_effect = delete
    client.exists.side_effect = lambda *keys: sum(1 for key in keys if key in store)
    client.scan_iter.side_effect = scan_iter
    client.flushdb.side_effect = flushdb
    client.ping.return_value = True
    client.info.return_value = {
        "redis_version": "7.2.4",
        "uptime_in_seconds": 3600,
        "connected_clients": 3,
        "used_memory": 1048576,
        "used_memory_human": "1.00M",
        "used_memory_peak": 2097152,
        "used_memory_peak_human": "2.00M",
        "keyspace_hits": 75,
        "keyspace_misses": 25,
        "expired_keys": 4,
        "evicted_keys": 0,
    }
    client.store = store
    client.ttls = ttls
    return client


# ---------------------------------------------------------------------------
# Store: in-memory SQLite shared by the test and the app (StaticPool)
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        env="test",
        database_url="sqlite://",
        log_level="WARNING",
        enable_request_logging=False,
        admin_enabled=True,
    )


@pytest.fixture
def redis_client():
    return make_fake_redis()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def cache(redis_client, settings, metrics):
    return CacheClient(redis_client, settings=settings, metrics=metrics)


@pytest.fixture
def app(settings, session_factory, cache, metrics):
    return create_app(settings=settings, session_factory=session_factory, cache=cache, metrics=metrics)


@pytest.fixture
def client(app):
    return TestClient(app)


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db):
    def _make(name="sleeper"):
        user = User(name=name)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_record(db):
    """Completed record when `minutes` is given, active otherwise."""
    def _make(user, bedtime, minutes=None):
        record = SleepRecord(user_id=user.id, bedtime=bedtime)
        if minutes is not None:
            record.wake_time = bedtime + timedelta(minutes=minutes)
            record.duration_minutes = minutes
        db.add(record)
        db.commit()
        return record
    return _make


@pytest.fixture
def make_follow(db):
    def _make(follower, followed, created_at=None):
        follow = Follow(user_id=follower.id, following_user_id=followed.id)
        if created_at is not None:
            follow.created_at = created_at
        db.add(follow)
        db.commit()
        return follow
    return _make
