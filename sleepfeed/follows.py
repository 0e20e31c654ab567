"""
Follow graph service: create/remove edges, cached counts and list pages.

Cache invalidation is an explicit step after each commit (see
invalidate_for_edge); nothing is wired into model callbacks.
"""

from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sleepfeed import cache_policy
from sleepfeed.cache import CacheClient
from sleepfeed.cache_policy import CacheCategory
from sleepfeed.errors import ConflictError, NotFoundError, user_not_found
from sleepfeed.logger import get_logger
from sleepfeed.models import Follow, User, as_utc
from sleepfeed.queries import (
    follow_edge_statement,
    followers_count_statement,
    followers_page_statement,
    following_count_statement,
    following_page_statement,
)
from sleepfeed.schemas import (
    CacheInfo,
    FollowedUser,
    FollowersListResponse,
    FollowingListResponse,
    FollowResponse,
    PageInfo,
)
from sleepfeed.validation import clamp_page, validate_follow

logger = get_logger("follows")

NOT_CACHED = "not_cached"


class FollowService:
    def __init__(self, db: Session, cache: CacheClient):
        self.db = db
        self.cache = cache

    #
    # Edges
    #

    def follow(self, user: User, target_id: int) -> FollowResponse:
        target = self.db.get(User, target_id)
        if target is None:
            raise user_not_found()
        validate_follow(user.id, target.id)

        if self.db.scalars(follow_edge_statement(user.id, target.id)).first() is not None:
            raise _duplicate_follow()

        follow = Follow(user_id=user.id, following_user_id=target.id)
        self.db.add(follow)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against an identical follow
            self.db.rollback()
            raise _duplicate_follow()

        self.invalidate_for_edge(user.id, target.id)
        logger.info("User %s followed %s", user.id, target.id)
        return FollowResponse(
            id=follow.id,
            following_user_id=target.id,
            following_user_name=target.name,
            created_at=follow.created_at,
        )

    def unfollow(self, user: User, target_id: int) -> None:
        target = self.db.get(User, target_id)
        if target is None:
            raise user_not_found()

        follow = self.db.scalars(follow_edge_statement(user.id, target.id)).first()
        if follow is None:
            raise NotFoundError("Not following this user", code="FOLLOW_RELATIONSHIP_NOT_FOUND")

        self.db.delete(follow)
        self.db.commit()
        self.invalidate_for_edge(user.id, target.id)
        logger.info("User %s unfollowed %s", user.id, target.id)

    def invalidate_for_edge(self, follower_id: int, followed_id: int) -> None:
        """Drop every cached value that an edge follower_id -> followed_id feeds into."""
        self.cache.delete(
            self.cache.cache_key(CacheCategory.FOLLOWING_COUNT, follower_id),
            self.cache.cache_key(CacheCategory.FOLLOWERS_COUNT, followed_id),
        )
        self.cache.delete_user_pattern(CacheCategory.FOLLOWING_LIST, follower_id)
        self.cache.delete_user_pattern(CacheCategory.FOLLOWERS_LIST, followed_id)
        self.cache.delete_user_pattern(CacheCategory.SOCIAL_SLEEP_STATS, follower_id)

    #
    # Counts
    #

    def following_count(self, user_id: int) -> int:
        key = self.cache.cache_key(CacheCategory.FOLLOWING_COUNT, user_id)
        return int(self.cache.fetch(
            key,
            self.cache.ttl(CacheCategory.FOLLOWING_COUNT),
            lambda: self.db.scalar(following_count_statement(user_id)) or 0,
        ))

    def followers_count(self, user_id: int) -> int:
        key = self.cache.cache_key(CacheCategory.FOLLOWERS_COUNT, user_id)
        return int(self.cache.fetch(
            key,
            self.cache.ttl(CacheCategory.FOLLOWERS_COUNT),
            lambda: self.db.scalar(followers_count_statement(user_id)) or 0,
        ))

    #
    # List pages
    #

    def following_page(self, user: User, limit=None, offset=None) -> FollowingListResponse:
        limit, offset = clamp_page(limit, offset)
        entries, cache_info = self._page(
            CacheCategory.FOLLOWING_LIST, user.id, limit, offset,
            lambda: self._entries(following_page_statement(user.id, limit, offset)),
        )
        total = self.following_count(user.id)
        return FollowingListResponse(
            following=[FollowedUser(**entry) for entry in entries],
            pagination=_page_info(total, limit, offset),
            cache_info=cache_info,
        )

    def followers_page(self, user: User, limit=None, offset=None) -> FollowersListResponse:
        limit, offset = clamp_page(limit, offset)
        entries, cache_info = self._page(
            CacheCategory.FOLLOWERS_LIST, user.id, limit, offset,
            lambda: self._entries(followers_page_statement(user.id, limit, offset)),
        )
        total = self.followers_count(user.id)
        return FollowersListResponse(
            followers=[FollowedUser(**entry) for entry in entries],
            pagination=_page_info(total, limit, offset),
            cache_info=cache_info,
        )

    def _page(self, category: CacheCategory, user_id: int, limit: int, offset: int, producer):
        if not cache_policy.should_cache_page(limit, offset):
            return producer(), CacheInfo(cached=False, cache_key=NOT_CACHED)

        key = self.cache.cache_key(category, user_id, cache_policy.page_suffix(limit, offset))
        entries, hit = self.cache.fetch_with_status(key, self.cache.ttl(category), producer)
        return entries, CacheInfo(cached=hit, cache_key=key)

    def _entries(self, stmt) -> List[Dict[str, Any]]:
        return [
            {"id": row.id, "name": row.name, "followed_at": as_utc(row.followed_at).isoformat()}
            for row in self.db.execute(stmt)
        ]


def _duplicate_follow() -> ConflictError:
    return ConflictError("Already following this user", code="DUPLICATE_FOLLOW")


def _page_info(total: int, limit: int, offset: int) -> PageInfo:
    return PageInfo(total_count=total, limit=limit, offset=offset, has_more=offset + limit < total)
