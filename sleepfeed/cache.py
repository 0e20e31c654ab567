"""
Redis cache layer for derived social data (follow lists, counts, sleep
statistics).

Redis is ONLY a cache, never the source of truth.
The relational store is always authoritative.

Every call into Redis is fail-open: connection errors and timeouts are
logged and treated as a cache miss (reads) or a no-op (writes, deletes).
A broken cache slows requests down but never fails them.
"""

import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import redis

from sleepfeed import cache_policy
from sleepfeed.cache_policy import CacheCategory
from sleepfeed.logger import get_logger
from sleepfeed.metrics import MetricsCollector

logger = get_logger("cache")

# Keys per SCAN round trip and per DEL call during pattern deletion
SCAN_BATCH_SIZE = 500


class CacheClient:
    """
    Redis cache client with deterministic keys, per-category TTLs and
    best-effort invalidation.

    Concurrent misses on the same key may both run the producer; producers
    are idempotent reads, so the last writer simply wins.
    """

    def __init__(self, client: "redis.Redis", settings=None, metrics: Optional[MetricsCollector] = None):
        """
        Args:
            client: redis-py client (decode_responses=True)
            settings: Settings used for per-category TTLs (defaults from cache_policy when None)
            metrics: collector that receives hit/miss/error counts
        """
        self.client = client
        self.settings = settings
        self.metrics = metrics

    @classmethod
    def from_settings(cls, settings, metrics: Optional[MetricsCollector] = None) -> "CacheClient":
        """
        Build a client from Settings.

        Connection priority:
        1. REDIS_URL (redis:// or rediss://)
        2. REDIS_HOST + REDIS_PORT + REDIS_DB
        """
        if settings.redis_url:
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout,
                socket_timeout=settings.redis_socket_timeout,
            )
        else:
            client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout,
                socket_timeout=settings.redis_socket_timeout,
            )
        return cls(client, settings=settings, metrics=metrics)

    #
    # Keys & TTLs
    #

    @staticmethod
    def cache_key(category: Union[CacheCategory, str], user_id, suffix: Optional[str] = None) -> str:
        """
        Render the key for one category and user.

        cache_key("following_list", 5, "20_0") -> "following_list:user:5:20_0"
        cache_key("following_list", 5)         -> "following_list:user:5"

        Raises UnknownCacheCategory (a ValueError) for unrecognized categories.
        """
        return cache_policy.render_key(category, user_id, suffix)

    def ttl(self, category: Union[CacheCategory, str]) -> int:
        return cache_policy.ttl_for(category, self.settings)

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except Exception:
            return False

    #
    # Read-through
    #

    def get(self, key: str) -> Tuple[bool, Any]:
        """Return (hit, value). Errors count as a miss."""
        try:
            cached = self.client.get(key)
        except Exception as e:
            self._record_error()
            logger.warning("Cache read error for %s: %s", key, e)
            return False, None
        if cached is None:
            return False, None
        try:
            return True, json.loads(cached)
        except (TypeError, ValueError) as e:
            logger.warning("Discarding undecodable cache entry %s: %s", key, e)
            return False, None

    def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            self.client.setex(key, int(ttl), json.dumps(value, default=str))
            return True
        except Exception as e:
            self._record_error()
            logger.warning("Cache write error for %s: %s", key, e)
            return False

    def fetch_with_status(self, key: str, ttl: int, producer: Callable[[], Any]) -> Tuple[Any, bool]:
        """
        Return (value, hit). On a miss `producer` runs and its result is
        stored with `ttl` seconds to live.
        """
        hit, value = self.get(key)
        if hit:
            if self.metrics:
                self.metrics.record_cache_hit()
            return value, True

        if self.metrics:
            self.metrics.record_cache_miss()
        value = producer()
        self.set(key, value, ttl)
        return value, False

    def fetch(self, key: str, ttl: int, producer: Callable[[], Any]) -> Any:
        """Cached value for `key`, computing and storing it on a miss."""
        value, _ = self.fetch_with_status(key, ttl, producer)
        return value

    def exists(self, key: str) -> bool:
        try:
            return bool(self.client.exists(key))
        except Exception as e:
            self._record_error()
            logger.warning("Cache exists error for %s: %s", key, e)
            return False

    #
    # Cache Invalidation
    #

    def delete(self, *keys: str) -> int:
        """Delete exact keys. Returns the number removed (0 on error)."""
        if not keys:
            return 0
        try:
            return int(self.client.delete(*keys) or 0)
        except Exception as e:
            self._record_error()
            logger.error("Cache delete error for %s: %s", ", ".join(keys), e)
            return 0

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob.

        Uses SCAN (cursor-based, non-blocking) rather than KEYS, and deletes
        in batches so a large key space never builds one huge DEL. Failures
        are logged and swallowed; the return value is the number of keys
        removed before any failure.
        """
        deleted = 0
        try:
            for batch in _batched(self.client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE), SCAN_BATCH_SIZE):
                deleted += int(self.client.delete(*batch) or 0)
        except Exception as e:
            self._record_error()
            logger.error("Cache pattern deletion error for %s: %s", pattern, e)
        return deleted

    def delete_user_pattern(self, category: Union[CacheCategory, str], user_id) -> int:
        """Delete all suffixed keys of `category` for one user ("<category>:user:<id>:*")."""
        return self.delete_pattern(cache_policy.user_pattern(category, user_id))

    def invalidate_user(self, user_id) -> int:
        """Drop every cached value derived from one user's data."""
        deleted = 0
        for category in cache_policy.PATTERN_CATEGORIES:
            deleted += self.delete_user_pattern(category, user_id)
        deleted += self.delete(*[self.cache_key(c, user_id) for c in cache_policy.COUNT_CATEGORIES])
        return deleted

    def flush_all(self) -> bool:
        """Flush entire cache database. Use carefully, only for maintenance."""
        try:
            self.client.flushdb()
            return True
        except Exception as e:
            self._record_error()
            logger.error("Cache flush error: %s", e)
            return False

    #
    # Server statistics
    #

    def info(self) -> Dict[str, Any]:
        """Raw Redis INFO. Raises on connection errors (callers decide)."""
        return self.client.info()

    def _record_error(self):
        if self.metrics:
            self.metrics.record_cache_error()


def _batched(items: Iterable[str], size: int) -> Iterable[List[str]]:
    batch: List[str] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
