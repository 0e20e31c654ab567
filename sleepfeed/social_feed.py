"""
Social feed: completed sleep records of everyone a user follows.

The feed page is always read live. However many users are followed, a
request runs a fixed number of statements:

    1. following count (usually a cache hit)
    2. aggregate statistics over the whole filtered set (also gives total_count)
    3. one page of records joined to their owners

Aggregate statistics on their own are cached per window in
social_sleep_stats:user:<id>:<days>d.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from sleepfeed import cache_policy
from sleepfeed.cache import CacheClient
from sleepfeed.cache_policy import DEFAULT_PAGE_SIZE, CacheCategory
from sleepfeed.follows import FollowService
from sleepfeed.logger import get_logger
from sleepfeed.models import User, utcnow
from sleepfeed.queries import FeedQuery, feed_page_statement, feed_stats_statement, social_feed_query
from sleepfeed.schemas import (
    DateRange,
    DurationStats,
    FeedPagination,
    FeedRecord,
    FeedStatistics,
    PrivacyInfo,
    SocialFeedResponse,
    Sorting,
)
from sleepfeed.validation import DEFAULT_DAYS_BACK, DEFAULT_SORT, validate_days

logger = get_logger("social_feed")

NO_FOLLOWS_MESSAGE = "No sleep records found. Follow users to see their sleep data!"


class SocialFeedService:
    def __init__(self, db: Session, cache: CacheClient, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.cache = cache
        self.clock = clock
        self.follows = FollowService(db, cache)

    def feed(
        self,
        user: User,
        days: int = DEFAULT_DAYS_BACK,
        sort_by: str = DEFAULT_SORT,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SocialFeedResponse:
        q = social_feed_query(user.id, days, sort_by, limit, offset, now=self.clock())
        following_count = self.follows.following_count(user.id)

        context = dict(
            date_range=DateRange(days_back=q.days_back, from_date=q.since.date(), to_date=q.until.date()),
            sorting=Sorting(sort_by=q.sort_by),
            privacy_info=PrivacyInfo(following_count=following_count),
        )

        if following_count == 0:
            return _empty_feed(q, NO_FOLLOWS_MESSAGE, **context)

        statistics = self._statistics(q)
        if statistics.total_records == 0:
            message = (
                f"No completed sleep records found from the {following_count} users "
                f"you follow in the last {q.days_back} days"
            )
            return _empty_feed(q, message, **context)

        records = [
            FeedRecord.from_row(record, user_name)
            for record, user_name in self.db.execute(feed_page_statement(q))
        ]
        logger.debug("Feed for user %s: %s of %s records", user.id, len(records), statistics.total_records)
        return SocialFeedResponse(
            sleep_records=records,
            pagination=_pagination(q, statistics.total_records, len(records)),
            statistics=statistics,
            **context,
        )

    def statistics(self, user: User, days: Optional[int] = None) -> FeedStatistics:
        days = validate_days(days)
        key = self.cache.cache_key(
            CacheCategory.SOCIAL_SLEEP_STATS, user.id, cache_policy.social_statistics_suffix(days)
        )
        data = self.cache.fetch(
            key,
            self.cache.ttl(CacheCategory.SOCIAL_SLEEP_STATS),
            lambda: self._statistics(social_feed_query(user.id, days, now=self.clock())).model_dump(),
        )
        return FeedStatistics(**data)

    def _statistics(self, q: FeedQuery) -> FeedStatistics:
        row = self.db.execute(feed_stats_statement(q)).one()
        if not row.total_records:
            return FeedStatistics()
        # AVG comes back as Decimal on PostgreSQL
        return FeedStatistics(
            total_records=row.total_records,
            unique_users=row.unique_users,
            duration_stats=DurationStats(
                average_minutes=round(float(row.average_minutes), 1),
                longest_minutes=int(row.longest_minutes),
                shortest_minutes=int(row.shortest_minutes),
                total_sleep_hours=round(float(row.total_minutes) / 60, 2),
            ),
        )


def _pagination(q: FeedQuery, total: int, current: int) -> FeedPagination:
    has_more = q.offset + q.limit < total
    return FeedPagination(
        total_count=total,
        current_count=current,
        limit=q.limit,
        offset=q.offset,
        has_more=has_more,
        next_offset=q.offset + q.limit if has_more else None,
        previous_offset=max(q.offset - q.limit, 0) if q.offset > 0 else None,
    )


def _empty_feed(q: FeedQuery, message: str, **context) -> SocialFeedResponse:
    return SocialFeedResponse(
        sleep_records=[],
        pagination=_pagination(q, 0, 0),
        statistics=FeedStatistics(),
        message=message,
        **context,
    )
