"""
Tests for cache administration: stats, clears, warming and debug output.
"""

import pytest
import redis

from sleepfeed.cache_admin import CacheAdmin
from sleepfeed.errors import InvalidParameterError, NotFoundError


@pytest.fixture
def admin(db, cache):
    return CacheAdmin(db, cache)


class TestStats:
    def test_redis_info_subset(self, admin):
        stats = admin.stats()
        assert stats["connected_clients"] == 3
        assert stats["used_memory"] == 1048576
        assert stats["used_memory_peak"] == 2097152
        assert stats["keyspace_hits"] == 75
        assert stats["keyspace_misses"] == 25
        assert stats["hit_rate"] == 75.0

    def test_application_counters(self, admin, cache):
        cache.fetch("k", 60, lambda: 1)
        cache.fetch("k", 60, lambda: 1)
        app_stats = admin.stats()["application"]
        assert (app_stats["hits"], app_stats["misses"]) == (1, 1)
        assert app_stats["hit_rate_pct"] == 50.0

    def test_unreachable(self, admin, redis_client):
        redis_client.info.side_effect = redis.ConnectionError("refused")
        assert admin.stats() == {"error": "refused"}


class TestClear:
    @pytest.fixture(autouse=True)
    def seed(self, redis_client):
        redis_client.store.update({
            "following_list:user:1:20_0": "[]",
            "followers_list:user:1:20_0": "[]",
            "user:1:following_count": "2",
            "following_list:user:2:20_0": "[]",
        })

    def test_everything(self, admin, redis_client):
        result = admin.clear()
        assert result["message"] == "Cleared all cache"
        assert redis_client.store == {}

    def test_one_user(self, admin, redis_client):
        result = admin.clear(user_id=1)
        assert result["deleted_keys"] == 3
        assert set(redis_client.store) == {"following_list:user:2:20_0"}

    def test_category_for_user(self, admin, redis_client):
        result = admin.clear("following_list", 1)
        assert result["deleted_keys"] == 1
        assert "followers_list:user:1:20_0" in redis_client.store

    def test_raw_glob(self, admin, redis_client):
        assert admin.clear("following_list:*")["deleted_keys"] == 2

    def test_unknown_category(self, admin):
        with pytest.raises(InvalidParameterError) as exc:
            admin.clear("timeline", 1)
        assert exc.value.code == "INVALID_CACHE_PATTERN"


class TestWarm:
    def test_warm_user_returns_keys(self, admin, make_user, redis_client):
        user = make_user("alice")
        keys = admin.warm_user(user)
        assert len(keys) == 6
        assert set(keys) == set(redis_client.store)

    def test_warm_all(self, admin, make_user, redis_client):
        users = [make_user(f"u{i}") for i in range(3)]
        assert admin.warm_all() == 3
        for user in users:
            assert f"user:{user.id}:following_count" in redis_client.store

    def test_warm_unknown_user(self, admin):
        with pytest.raises(NotFoundError):
            admin.warm_user_id(999)


class TestDebug:
    def test_reports_sample_keys(self, admin, make_user):
        user = make_user("alice")
        admin.warm_user(user)

        report = admin.debug(user.id)

        assert report["user_name"] == "alice"
        entries = {e["key"]: e for e in report["cache_debug"]}
        following = entries[f"following_list:user:{user.id}:20_0"]
        assert following["exists"] is True
        assert following["data_type"] == "list"
        assert following["data_size"] == 0
        count = entries[f"user:{user.id}:following_count"]
        assert count["data_type"] == "int"
        assert count["data_size"] == "unknown"

    def test_missing_entries(self, admin, make_user):
        user = make_user("alice")
        report = admin.debug(user.id)
        assert all(e["exists"] is False for e in report["cache_debug"])
        assert all(e["data_type"] == "NoneType" for e in report["cache_debug"])

    def test_unknown_user(self, admin):
        with pytest.raises(NotFoundError):
            admin.debug(999)
