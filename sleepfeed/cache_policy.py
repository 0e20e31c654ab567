"""
sleepfeed Redis Caching Policy: what gets cached, key templates, TTLs and
invalidation rules.

This module is imported by cache.py for key construction and by the
services for page-caching decisions.

Architecture:
  Relational store → source of truth (users, sleep_records, follows)
  Redis            → read-through cache (derived values only, TTL-based expiry)

The cache may be flushed at any time without data loss. Entries are never
updated in place: writes invalidate, the next read recomputes.
"""

from enum import Enum
from typing import Optional, Union

# ────────────────────────────────────────────────────────────────────────────
# Cache Policy Table
# ────────────────────────────────────────────────────────────────────────────
#
# Category           | Key Template                              | TTL     | Invalidated by
# -------------------+-------------------------------------------+---------+------------------------------
# following_list     | following_list:user:{id}:{limit}_{offset} | 30 min  | follow / unfollow (follower)
# followers_list     | followers_list:user:{id}:{limit}_{offset} | 30 min  | follow / unfollow (followed)
# following_count    | user:{id}:following_count                 | 1 hour  | follow / unfollow (follower)
# followers_count    | user:{id}:followers_count                 | 1 hour  | follow / unfollow (followed)
# sleep_statistics   | sleep_statistics:user:{id}:{days}_days    | 30 min  | clock-out / delete (owner)
# social_sleep_stats | social_sleep_stats:user:{id}:{days}d      | 5 min   | follow / unfollow (follower)
#
# ────────────────────────────────────────────────────────────────────────────
# Consistency Expectations
# ────────────────────────────────────────────────────────────────────────────
#
# - Invalidation runs after the database commit as a separate step. A crash
#   in between leaves a stale entry until its TTL expires.
# - social_sleep_stats is NOT invalidated when a followed user clocks out;
#   the follower sees the new record once the 5 minute TTL lapses.
# - Only the first page at the default page size (or smaller) is cached.
#   Deeper pages and larger limits always read from the database.

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class CacheCategory(str, Enum):
    FOLLOWING_LIST = "following_list"
    FOLLOWERS_LIST = "followers_list"
    FOLLOWING_COUNT = "following_count"
    FOLLOWERS_COUNT = "followers_count"
    SLEEP_STATISTICS = "sleep_statistics"
    SOCIAL_SLEEP_STATS = "social_sleep_stats"


class UnknownCacheCategory(ValueError):
    """Raised for a category name with no key template."""


# Templates with a {suffix} slot render the bare per-user key when no suffix is given
KEY_TEMPLATES = {
    CacheCategory.FOLLOWING_LIST: "following_list:user:{user_id}:{suffix}",
    CacheCategory.FOLLOWERS_LIST: "followers_list:user:{user_id}:{suffix}",
    CacheCategory.FOLLOWING_COUNT: "user:{user_id}:following_count",
    CacheCategory.FOLLOWERS_COUNT: "user:{user_id}:followers_count",
    CacheCategory.SLEEP_STATISTICS: "sleep_statistics:user:{user_id}:{suffix}",
    CacheCategory.SOCIAL_SLEEP_STATS: "social_sleep_stats:user:{user_id}:{suffix}",
}

# Categories that can be bulk-deleted with "<category>:user:<id>:*"
PATTERN_CATEGORIES = frozenset({
    CacheCategory.FOLLOWING_LIST,
    CacheCategory.FOLLOWERS_LIST,
    CacheCategory.SLEEP_STATISTICS,
    CacheCategory.SOCIAL_SLEEP_STATS,
})

COUNT_CATEGORIES = (CacheCategory.FOLLOWING_COUNT, CacheCategory.FOLLOWERS_COUNT)

# TTL constants (seconds); Settings can override each one
DEFAULT_TTLS = {
    CacheCategory.FOLLOWING_LIST: 1800,     # 30 minutes
    CacheCategory.FOLLOWERS_LIST: 1800,     # 30 minutes
    CacheCategory.FOLLOWING_COUNT: 3600,    # 1 hour
    CacheCategory.FOLLOWERS_COUNT: 3600,    # 1 hour
    CacheCategory.SLEEP_STATISTICS: 1800,   # 30 minutes
    CacheCategory.SOCIAL_SLEEP_STATS: 300,  # 5 minutes
}


def resolve_category(category: Union[CacheCategory, str]) -> CacheCategory:
    if isinstance(category, CacheCategory):
        return category
    try:
        return CacheCategory(str(category))
    except ValueError:
        raise UnknownCacheCategory(f"Unknown cache pattern: {category}") from None


def ttl_for(category: Union[CacheCategory, str], settings=None) -> int:
    """TTL for a category, taken from Settings when given (ttl_<category>)."""
    category = resolve_category(category)
    if settings is not None:
        return int(getattr(settings, f"ttl_{category.value}", DEFAULT_TTLS[category]))
    return DEFAULT_TTLS[category]


def should_cache_page(limit: int, offset: int) -> bool:
    """Only the small first page is worth keeping in memory."""
    return offset == 0 and limit <= DEFAULT_PAGE_SIZE


def page_suffix(limit: int, offset: int) -> str:
    return f"{limit}_{offset}"


def statistics_suffix(days: int) -> str:
    return f"{days}_days"


def social_statistics_suffix(days: int) -> str:
    return f"{days}d"


def user_pattern(category: Union[CacheCategory, str], user_id) -> str:
    """Glob matching every suffixed key of one category for one user."""
    category = resolve_category(category)
    if category not in PATTERN_CATEGORIES:
        raise UnknownCacheCategory(f"Unknown cache prefix pattern: {category.value}")
    return f"{category.value}:user:{user_id}:*"


def render_key(category: Union[CacheCategory, str], user_id, suffix: Optional[str] = None) -> str:
    category = resolve_category(category)
    template = KEY_TEMPLATES[category]
    if suffix is None:
        template = template.replace(":{suffix}", "")
        return template.format(user_id=user_id)
    return template.format(user_id=user_id, suffix=suffix)
