"""
Operator tooling for the Redis cache: statistics, targeted clears, warming
and per-user inspection.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from sleepfeed import cache_policy
from sleepfeed.cache import CacheClient
from sleepfeed.cache_policy import CacheCategory, UnknownCacheCategory
from sleepfeed.errors import InvalidParameterError, user_not_found
from sleepfeed.follows import FollowService
from sleepfeed.logger import get_logger
from sleepfeed.models import User
from sleepfeed.sleep_sessions import SleepSessionService
from sleepfeed.social_feed import SocialFeedService
from sleepfeed.validation import DEFAULT_DAYS_BACK

logger = get_logger("cache_admin")

WARM_BATCH_SIZE = 500

# Fields copied from Redis INFO into stats()
INFO_FIELDS = (
    "redis_version",
    "uptime_in_seconds",
    "connected_clients",
    "used_memory",
    "used_memory_human",
    "used_memory_peak",
    "used_memory_peak_human",
    "keyspace_hits",
    "keyspace_misses",
    "expired_keys",
    "evicted_keys",
)


class CacheAdmin:
    def __init__(self, db: Session, cache: CacheClient):
        self.db = db
        self.cache = cache

    def stats(self) -> Dict[str, Any]:
        """
        Redis server counters plus this process's own hit/miss tally.

        Returns {"error": ...} instead of raising when Redis is unreachable.
        """
        try:
            info = self.cache.info()
        except Exception as e:
            logger.error("Failed to read cache stats: %s", e)
            return {"error": str(e)}

        stats = {field: info.get(field) for field in INFO_FIELDS}
        hits = int(info.get("keyspace_hits") or 0)
        misses = int(info.get("keyspace_misses") or 0)
        stats["hit_rate"] = round(hits / (hits + misses) * 100, 2) if hits + misses else 0.0

        metrics = self.cache.metrics
        if metrics is not None:
            stats["application"] = {
                "hits": metrics.cache_hits,
                "misses": metrics.cache_misses,
                "errors": metrics.cache_errors,
                "hit_rate_pct": round(metrics.get_cache_hit_rate(), 2),
            }
        return stats

    def clear(self, pattern: Optional[str] = None, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        clear()                       -> flush the whole cache database
        clear(user_id=5)              -> every entry derived from user 5
        clear("following_list", 5)    -> one category for user 5
        clear("following_list:*")     -> raw glob
        """
        if pattern and user_id is not None:
            try:
                deleted = self.cache.delete_user_pattern(pattern, user_id)
            except UnknownCacheCategory as e:
                raise InvalidParameterError(str(e), code="INVALID_CACHE_PATTERN") from None
            message = f"Cleared {pattern} cache for user {user_id}"
        elif user_id is not None:
            deleted = self.cache.invalidate_user(user_id)
            message = f"Cleared all cache for user {user_id}"
        elif pattern:
            deleted = self.cache.delete_pattern(pattern)
            message = f"Cleared keys matching {pattern}"
        else:
            self.cache.flush_all()
            deleted = None
            message = "Cleared all cache"

        logger.info(message)
        return {"message": message, "deleted_keys": deleted}

    def warm_user(self, user: User) -> List[str]:
        """Populate the entries a user's first requests will read. Returns the keys written."""
        follows = FollowService(self.db, self.cache)
        follows.following_count(user.id)
        follows.followers_count(user.id)
        following = follows.following_page(user)
        followers = follows.followers_page(user)
        SleepSessionService(self.db, self.cache).statistics(user, DEFAULT_DAYS_BACK)
        SocialFeedService(self.db, self.cache).statistics(user, DEFAULT_DAYS_BACK)

        return [
            self.cache.cache_key(CacheCategory.FOLLOWING_COUNT, user.id),
            self.cache.cache_key(CacheCategory.FOLLOWERS_COUNT, user.id),
            following.cache_info.cache_key,
            followers.cache_info.cache_key,
            self.cache.cache_key(
                CacheCategory.SLEEP_STATISTICS, user.id, cache_policy.statistics_suffix(DEFAULT_DAYS_BACK)
            ),
            self.cache.cache_key(
                CacheCategory.SOCIAL_SLEEP_STATS, user.id, cache_policy.social_statistics_suffix(DEFAULT_DAYS_BACK)
            ),
        ]

    def warm_user_id(self, user_id: int) -> List[str]:
        return self.warm_user(self._user(user_id))

    def warm_all(self) -> int:
        """Warm every user, walking the table in id order. Returns the number of users warmed."""
        warmed = 0
        last_id = 0
        while True:
            users = list(self.db.scalars(
                select(User).where(User.id > last_id).order_by(User.id).limit(WARM_BATCH_SIZE)
            ))
            if not users:
                break
            for user in users:
                self.warm_user(user)
                warmed += 1
            last_id = users[-1].id

        logger.info("Warmed cache for %s users", warmed)
        return warmed

    def debug(self, user_id: int) -> Dict[str, Any]:
        """What is cached right now for one user's most common keys."""
        user = self._user(user_id)

        keys = [
            self.cache.cache_key(CacheCategory.FOLLOWING_LIST, user.id, cache_policy.page_suffix(20, 0)),
            self.cache.cache_key(CacheCategory.FOLLOWERS_LIST, user.id, cache_policy.page_suffix(20, 0)),
            self.cache.cache_key(CacheCategory.FOLLOWING_COUNT, user.id),
            self.cache.cache_key(CacheCategory.FOLLOWERS_COUNT, user.id),
            self.cache.cache_key(
                CacheCategory.SOCIAL_SLEEP_STATS, user.id, cache_policy.social_statistics_suffix(DEFAULT_DAYS_BACK)
            ),
            self.cache.cache_key(
                CacheCategory.SLEEP_STATISTICS, user.id, cache_policy.statistics_suffix(DEFAULT_DAYS_BACK)
            ),
        ]

        entries = []
        for key in keys:
            hit, value = self.cache.get(key)
            entries.append({
                "key": key,
                "exists": hit,
                "data_type": type(value).__name__ if hit else "NoneType",
                "data_size": len(value) if hit and hasattr(value, "__len__") else "unknown",
            })

        return {
            "user_id": user.id,
            "user_name": user.name,
            "cache_debug": entries,
            "cache_stats": self.stats(),
        }

    def _user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise user_not_found()
        return user
