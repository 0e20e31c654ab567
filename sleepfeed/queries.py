"""
Query builders.

Each function returns a SQLAlchemy `Select` (itself immutable) built from
explicit arguments; nothing here touches a session. The social feed is
described first as a frozen `FeedQuery` (predicate inputs + sort +
limit/offset) and then rendered into its page and statistics statements,
both of which share the same filters.

All list/feed statements are shaped to hit the indexes declared in
models.py:
- feed join:        idx_follows_user_created + idx_sleep_records_user_completed
- user history:     idx_sleep_records_user_bedtime
- active session:   idx_sleep_records_active (partial)
- follow lists:     idx_follows_user_created / idx_follows_following_created
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import Select, and_, distinct, func, or_, select

from sleepfeed.cache_policy import DEFAULT_PAGE_SIZE
from sleepfeed.models import Follow, SleepRecord, User, as_utc, utcnow
from sleepfeed.validation import DEFAULT_DAYS_BACK, DEFAULT_SORT, MAX_DAYS_BACK, MIN_DAYS_BACK, clamp_page

SORT_COLUMNS = {
    "duration": SleepRecord.duration_minutes,
    "bedtime": SleepRecord.bedtime,
    "wake_time": SleepRecord.wake_time,
    "created_at": SleepRecord.created_at,
}


def resolve_sort(sort_by: Optional[str]) -> str:
    """Known sort key, or duration for anything unrecognized."""
    return sort_by if sort_by in SORT_COLUMNS else DEFAULT_SORT


# ────────────────────────────────────────────────────────────────────────────
# Social feed
# ────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeedQuery:
    """Completed records of everyone `follower_id` follows, bedtime in [since, until]."""

    follower_id: int
    since: datetime
    until: datetime
    sort_by: str = DEFAULT_SORT
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    @property
    def days_back(self) -> int:
        return (self.until - self.since).days

    def page(self, limit: Optional[int], offset: Optional[int]) -> "FeedQuery":
        limit, offset = clamp_page(limit, offset)
        return replace(self, limit=limit, offset=offset)

    def sorted_by(self, sort_by: str) -> "FeedQuery":
        return replace(self, sort_by=resolve_sort(sort_by))


def social_feed_query(
    follower_id: int,
    days: Optional[int] = DEFAULT_DAYS_BACK,
    sort_by: Optional[str] = DEFAULT_SORT,
    limit: Optional[int] = DEFAULT_PAGE_SIZE,
    offset: Optional[int] = 0,
    now: Optional[datetime] = None,
) -> FeedQuery:
    """
    Lenient counterpart of validate_feed_params: the window is clamped to
    1-30 days, paging goes through clamp_page and unknown sorts fall back
    to duration, so any caller gets a statement the store accepts.
    """
    days = DEFAULT_DAYS_BACK if days is None else min(max(days, MIN_DAYS_BACK), MAX_DAYS_BACK)
    limit, offset = clamp_page(limit, offset)
    until = as_utc(now) or utcnow()
    return FeedQuery(
        follower_id=follower_id,
        since=until - timedelta(days=days),
        until=until,
        sort_by=resolve_sort(sort_by),
        limit=limit,
        offset=offset,
    )


def feed_predicates(q: FeedQuery) -> List:
    return [
        SleepRecord.user_id != q.follower_id,
        SleepRecord.wake_time.is_not(None),
        SleepRecord.duration_minutes.is_not(None),
        SleepRecord.bedtime >= q.since,
        SleepRecord.bedtime <= q.until,
    ]


def _feed_join_condition(q: FeedQuery):
    # Record owner is followed by the requesting user
    return and_(Follow.following_user_id == SleepRecord.user_id, Follow.user_id == q.follower_id)


def feed_page_statement(q: FeedQuery) -> Select:
    """One page of feed rows: (SleepRecord, user_name), newest-first by the sort key."""
    sort_column = SORT_COLUMNS[resolve_sort(q.sort_by)]
    return (
        select(SleepRecord, User.name.label("user_name"))
        .select_from(SleepRecord)
        .join(Follow, _feed_join_condition(q))
        .join(User, User.id == SleepRecord.user_id)
        .where(*feed_predicates(q))
        .order_by(sort_column.desc(), SleepRecord.id.desc())
        .limit(q.limit)
        .offset(q.offset)
    )


def feed_stats_statement(q: FeedQuery) -> Select:
    """Aggregates over the whole filtered feed (ignores limit/offset)."""
    duration = SleepRecord.duration_minutes
    return (
        select(
            func.count(SleepRecord.id).label("total_records"),
            func.count(distinct(SleepRecord.user_id)).label("unique_users"),
            func.avg(duration).label("average_minutes"),
            func.min(duration).label("shortest_minutes"),
            func.max(duration).label("longest_minutes"),
            func.sum(duration).label("total_minutes"),
        )
        .select_from(SleepRecord)
        .join(Follow, _feed_join_condition(q))
        .where(*feed_predicates(q))
    )


# ────────────────────────────────────────────────────────────────────────────
# Sleep sessions
# ────────────────────────────────────────────────────────────────────────────

def active_session_statement(user_id: int) -> Select:
    return (
        select(SleepRecord)
        .where(SleepRecord.user_id == user_id, SleepRecord.wake_time.is_(None))
        .limit(1)
    )


def overlapping_sessions_statement(user_id: int, bedtime: datetime, exclude_id: Optional[int] = None) -> Select:
    """
    Sessions of `user_id` that a session starting at `bedtime` collides with:
    started at or before it and still active or ending after it.
    """
    stmt = select(SleepRecord).where(
        SleepRecord.user_id == user_id,
        SleepRecord.bedtime <= bedtime,
        or_(SleepRecord.wake_time.is_(None), SleepRecord.wake_time > bedtime),
    )
    if exclude_id is not None:
        stmt = stmt.where(SleepRecord.id != exclude_id)
    return stmt.limit(1)


def later_sessions_statement(user_id: int, bedtime: datetime, wake_time: datetime, exclude_id: int) -> Select:
    """Sessions of `user_id` that start inside (bedtime, wake_time)."""
    return (
        select(SleepRecord)
        .where(
            SleepRecord.user_id == user_id,
            SleepRecord.id != exclude_id,
            SleepRecord.bedtime > bedtime,
            SleepRecord.bedtime < wake_time,
        )
        .limit(1)
    )


def user_records_statement(user_id: int, completed: bool = False, active: bool = False) -> Select:
    """A user's own records, most recent bedtime first."""
    stmt = select(SleepRecord).where(SleepRecord.user_id == user_id)
    if completed:
        stmt = stmt.where(SleepRecord.wake_time.is_not(None))
    if active:
        stmt = stmt.where(SleepRecord.wake_time.is_(None))
    return stmt.order_by(SleepRecord.bedtime.desc(), SleepRecord.id.desc())


def completed_durations_statement(user_id: int, since: datetime, until: datetime) -> Select:
    return select(SleepRecord.duration_minutes).where(
        SleepRecord.user_id == user_id,
        SleepRecord.wake_time.is_not(None),
        SleepRecord.duration_minutes.is_not(None),
        SleepRecord.bedtime >= since,
        SleepRecord.bedtime <= until,
    )


def count_statement(stmt: Select) -> Select:
    """COUNT(*) over any statement, with its ordering and paging dropped."""
    return select(func.count()).select_from(stmt.order_by(None).limit(None).offset(None).subquery())


# ────────────────────────────────────────────────────────────────────────────
# Follow graph
# ────────────────────────────────────────────────────────────────────────────

def follow_edge_statement(follower_id: int, target_id: int) -> Select:
    return select(Follow).where(Follow.user_id == follower_id, Follow.following_user_id == target_id)


def following_page_statement(user_id: int, limit: int, offset: int) -> Select:
    """(followed user id, name, followed_at) for the users `user_id` follows, newest edge first."""
    return (
        select(User.id, User.name, Follow.created_at.label("followed_at"))
        .select_from(Follow)
        .join(User, User.id == Follow.following_user_id)
        .where(Follow.user_id == user_id)
        .order_by(Follow.created_at.desc(), Follow.id.desc())
        .limit(limit)
        .offset(offset)
    )


def followers_page_statement(user_id: int, limit: int, offset: int) -> Select:
    """(follower id, name, followed_at) for the users following `user_id`, newest edge first."""
    return (
        select(User.id, User.name, Follow.created_at.label("followed_at"))
        .select_from(Follow)
        .join(User, User.id == Follow.user_id)
        .where(Follow.following_user_id == user_id)
        .order_by(Follow.created_at.desc(), Follow.id.desc())
        .limit(limit)
        .offset(offset)
    )


def following_count_statement(user_id: int) -> Select:
    return select(func.count(Follow.id)).where(Follow.user_id == user_id)


def followers_count_statement(user_id: int) -> Select:
    return select(func.count(Follow.id)).where(Follow.following_user_id == user_id)


def followed_ids_statement(user_id: int) -> Select:
    return select(Follow.following_user_id).where(Follow.user_id == user_id)


def follower_ids_statement(user_id: int) -> Select:
    return select(Follow.user_id).where(Follow.following_user_id == user_id)
