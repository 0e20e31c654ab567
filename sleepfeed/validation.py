"""
Domain rules for sleep sessions, follow edges and feed parameters.

Pure functions: they take values (and "now" where time matters) and raise
sleepfeed.errors exceptions. Anything needing the database lives in the
services, which call into here.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sleepfeed.cache_policy import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from sleepfeed.errors import ConflictError, InvalidParameterError, RecordValidationError
from sleepfeed.models import as_utc, utcnow

MIN_REASONABLE_SLEEP_MINUTES = 1
MAX_REASONABLE_SLEEP_HOURS = 24
MAX_REASONABLE_SLEEP_MINUTES = MAX_REASONABLE_SLEEP_HOURS * 60

NAME_MAX_LENGTH = 100

MIN_DAYS_BACK = 1
MAX_DAYS_BACK = 30
DEFAULT_DAYS_BACK = 7

SORT_OPTIONS = ("duration", "bedtime", "wake_time", "created_at")
DEFAULT_SORT = "duration"


def validate_user_name(name: Optional[str]) -> str:
    """Return the trimmed display name or raise VALIDATION_ERROR."""
    value = (name or "").strip()
    errors: List[str] = []
    if not value:
        errors.append("can't be blank")
    elif len(value) > NAME_MAX_LENGTH:
        errors.append(f"is too long (maximum is {NAME_MAX_LENGTH} characters)")
    if errors:
        raise RecordValidationError({"name": errors})
    return value


def validate_bedtime(bedtime: datetime, now: Optional[datetime] = None) -> datetime:
    """Bedtime normalized to UTC; it may not lie in the future."""
    bedtime = as_utc(bedtime)
    now = as_utc(now) or utcnow()
    if bedtime > now:
        raise RecordValidationError.single("bedtime", "cannot be in the future")
    return bedtime


def duration_minutes(bedtime: datetime, wake_time: datetime) -> int:
    """Whole minutes between the two instants, halves rounded up."""
    seconds = (as_utc(wake_time) - as_utc(bedtime)).total_seconds()
    return int(seconds / 60 + 0.5)


def validate_wake_time(bedtime: datetime, wake_time: datetime) -> int:
    """
    Check a clock-out and return the resulting duration in minutes.

    wake_time must be strictly after bedtime and the duration must lie in
    [1 minute, 24 hours].
    """
    bedtime, wake_time = as_utc(bedtime), as_utc(wake_time)
    if wake_time <= bedtime:
        raise RecordValidationError.single("wake_time", "must be after bedtime")

    minutes = duration_minutes(bedtime, wake_time)
    errors: Dict[str, List[str]] = {}
    if minutes > MAX_REASONABLE_SLEEP_MINUTES:
        errors.setdefault("wake_time", []).append(
            f"sleep duration cannot exceed {MAX_REASONABLE_SLEEP_HOURS} hours"
        )
    if minutes < MIN_REASONABLE_SLEEP_MINUTES:
        errors.setdefault("wake_time", []).append(
            f"sleep duration must be at least {MIN_REASONABLE_SLEEP_MINUTES} minute"
        )
    if errors:
        raise RecordValidationError(errors)
    return minutes


def sessions_overlap(existing_bedtime: datetime, existing_wake_time: Optional[datetime], bedtime: datetime) -> bool:
    """
    Does a session starting at `bedtime` collide with an existing one?

    It does when the existing session started at or before `bedtime` and is
    either still active or ended after `bedtime`.
    queries.overlapping_sessions_statement() is the SQL form of this rule.
    """
    existing_bedtime, bedtime = as_utc(existing_bedtime), as_utc(bedtime)
    if existing_bedtime > bedtime:
        return False
    return existing_wake_time is None or as_utc(existing_wake_time) > bedtime


def validate_follow(follower_id: int, target_id: int) -> None:
    if follower_id == target_id:
        raise ConflictError("Cannot follow yourself", code="SELF_FOLLOW_NOT_ALLOWED")


def validate_days(days: Optional[int]) -> int:
    days = DEFAULT_DAYS_BACK if days is None else days
    if not MIN_DAYS_BACK <= days <= MAX_DAYS_BACK:
        raise InvalidParameterError(
            f"Date range must be between {MIN_DAYS_BACK} and {MAX_DAYS_BACK} days",
            code="INVALID_DATE_RANGE",
        )
    return days


@dataclass(frozen=True)
class FeedParams:
    days: int = DEFAULT_DAYS_BACK
    sort_by: str = DEFAULT_SORT
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


def validate_feed_params(
    days: Optional[int] = None,
    sort_by: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> FeedParams:
    """Validate social feed query parameters; missing values take defaults."""
    days = validate_days(days)

    sort_by = sort_by or DEFAULT_SORT
    if sort_by not in SORT_OPTIONS:
        raise InvalidParameterError(
            f"Invalid sort parameter. Must be one of: {', '.join(SORT_OPTIONS)}",
            code="INVALID_SORT_PARAMETER",
        )

    limit = DEFAULT_PAGE_SIZE if limit is None else limit
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidParameterError(
            f"Limit must be between 1 and {MAX_PAGE_SIZE}",
            code="INVALID_PAGINATION_LIMIT",
        )

    offset = 0 if offset is None else offset
    if offset < 0:
        raise InvalidParameterError("Offset must be non-negative", code="INVALID_PAGINATION_OFFSET")

    return FeedParams(days=days, sort_by=sort_by, limit=limit, offset=offset)


def clamp_page(limit: Optional[int], offset: Optional[int]) -> tuple:
    """List endpoints are lenient: default 20, capped at 100, offset floored at 0."""
    limit = DEFAULT_PAGE_SIZE if not limit or limit < 1 else min(limit, MAX_PAGE_SIZE)
    offset = max(offset or 0, 0)
    return limit, offset
