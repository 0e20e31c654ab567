"""
Sleep session lifecycle: clock in, clock out, history and personal
statistics.

A user has at most one active session. The check below gives the friendly
error; the unique partial index idx_sleep_records_active is what actually
holds under concurrent clock-ins.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sleepfeed import cache_policy
from sleepfeed.cache import CacheClient
from sleepfeed.cache_policy import CacheCategory
from sleepfeed.errors import ConflictError, NotFoundError, RecordValidationError, record_not_found
from sleepfeed.logger import get_logger
from sleepfeed.models import SleepRecord, User, as_utc, utcnow
from sleepfeed.queries import (
    active_session_statement,
    completed_durations_statement,
    count_statement,
    follow_edge_statement,
    later_sessions_statement,
    overlapping_sessions_statement,
    user_records_statement,
)
from sleepfeed.schemas import SleepStatistics
from sleepfeed.validation import clamp_page, validate_bedtime, validate_days, validate_wake_time

logger = get_logger("sleep_sessions")


class SleepSessionService:
    def __init__(self, db: Session, cache: CacheClient, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.cache = cache
        self.clock = clock

    #
    # Lifecycle
    #

    def clock_in(self, user: User, bedtime: Optional[datetime] = None) -> SleepRecord:
        now = self.clock()

        active = self.active_session(user.id)
        if active is not None:
            raise _active_session_exists(active.id)

        bedtime = validate_bedtime(bedtime or now, now)
        if self.db.scalars(overlapping_sessions_statement(user.id, bedtime)).first() is not None:
            raise RecordValidationError.single("bedtime", "overlaps with an existing sleep session")

        record = SleepRecord(user_id=user.id, bedtime=bedtime)
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            active = self.active_session(user.id)
            if active is None:
                raise
            raise _active_session_exists(active.id)

        logger.info("User %s clocked in (record %s)", user.id, record.id)
        return record

    def clock_out(self, user: User, record_id: int, wake_time: Optional[datetime] = None) -> SleepRecord:
        record = self._owned_record(user, record_id)
        if not record.active:
            raise ConflictError("No active sleep session found", code="NO_ACTIVE_SESSION")

        wake_time = as_utc(wake_time) or self.clock()
        minutes = validate_wake_time(record.bedtime, wake_time)

        later = self.db.scalars(
            later_sessions_statement(user.id, record.bedtime, wake_time, exclude_id=record.id)
        ).first()
        if later is not None:
            raise RecordValidationError.single("wake_time", "overlaps with a later sleep session")

        record.wake_time = wake_time
        record.duration_minutes = minutes
        self.db.commit()

        self.invalidate_statistics(user.id)
        logger.info("User %s clocked out (record %s, %s min)", user.id, record.id, minutes)
        return record

    def delete_record(self, user: User, record_id: int) -> None:
        record = self._owned_record(user, record_id)
        self.db.delete(record)
        self.db.commit()
        self.invalidate_statistics(user.id)

    def invalidate_statistics(self, user_id: int) -> int:
        return self.cache.delete_user_pattern(CacheCategory.SLEEP_STATISTICS, user_id)

    #
    # Reads
    #

    def active_session(self, user_id: int) -> Optional[SleepRecord]:
        return self.db.scalars(active_session_statement(user_id)).first()

    def current_session(self, user: User) -> SleepRecord:
        record = self.active_session(user.id)
        if record is None:
            raise NotFoundError("No active sleep session found", code="NO_ACTIVE_SESSION")
        return record

    def get_record(self, user: User, record_id: int) -> SleepRecord:
        """Visible to its owner and to anyone following the owner."""
        record = self.db.get(SleepRecord, record_id)
        if record is None:
            raise record_not_found()
        if record.user_id != user.id:
            edge = self.db.scalars(follow_edge_statement(user.id, record.user_id)).first()
            if edge is None:
                raise record_not_found()
        return record

    def list_records(
        self,
        user: User,
        completed: bool = False,
        active: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[SleepRecord], int, int, int]:
        """Returns (records, total_count, limit, offset)."""
        limit, offset = clamp_page(limit, offset)
        stmt = user_records_statement(user.id, completed=completed, active=active)
        total = self.db.scalar(count_statement(stmt)) or 0
        records = list(self.db.scalars(stmt.limit(limit).offset(offset)))
        return records, total, limit, offset

    def statistics(self, user: User, days: Optional[int] = None) -> SleepStatistics:
        days = validate_days(days)
        key = self.cache.cache_key(
            CacheCategory.SLEEP_STATISTICS, user.id, cache_policy.statistics_suffix(days)
        )
        data = self.cache.fetch(
            key,
            self.cache.ttl(CacheCategory.SLEEP_STATISTICS),
            lambda: self._compute_statistics(user.id, days).model_dump(),
        )
        return SleepStatistics(**data)

    def _compute_statistics(self, user_id: int, days: int) -> SleepStatistics:
        until = self.clock()
        durations = list(self.db.scalars(
            completed_durations_statement(user_id, until - timedelta(days=days), until)
        ))
        if not durations:
            return SleepStatistics()
        total = sum(durations)
        return SleepStatistics(
            total_records=len(durations),
            average_duration=round(total / len(durations), 1),
            total_sleep_time=total,
            longest_sleep=max(durations),
            shortest_sleep=min(durations),
        )

    def _owned_record(self, user: User, record_id: int) -> SleepRecord:
        record = self.db.get(SleepRecord, record_id)
        if record is None or record.user_id != user.id:
            raise record_not_found()
        return record


def _active_session_exists(record_id: int) -> ConflictError:
    return ConflictError(
        "You already have an active sleep session",
        code="ACTIVE_SESSION_EXISTS",
        details={"active_session_id": record_id},
    )
