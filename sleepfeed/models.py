"""
SQLAlchemy database models.
These are the authoritative source of truth for users, sleep records and
follow relationships. The Redis cache only ever holds values derived from
these tables.

Index layout (every social/list query is index-backed):
- users:          idx_users_name [name]
- sleep_records:  idx_sleep_records_bedtime [bedtime]
                  idx_sleep_records_user_bedtime [user_id, bedtime]
                  idx_sleep_records_user_completed [user_id, bedtime] WHERE wake_time IS NOT NULL
                  idx_sleep_records_active UNIQUE [user_id] WHERE wake_time IS NULL
- follows:        uq_follows_user_following UNIQUE [user_id, following_user_id]
                  idx_follows_user_created [user_id, created_at]
                  idx_follows_following_created [following_user_id, created_at]

idx_sleep_records_active is unique so the store itself guarantees at most
one active session per user, even when two clock-ins race past the overlap
check.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String,
    UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from sleepfeed.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend.

    SQLite drops tzinfo, so values are converted to UTC before binding and
    re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        value = as_utc(value)
        if value is not None and dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return as_utc(value)


class User(Base):
    """An account that records sleep and follows other accounts."""
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_name", "name"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sleep_records = relationship(
        "SleepRecord", back_populates="user", cascade="all, delete-orphan",
    )
    # Edges where this user is the follower
    follows = relationship(
        "Follow", foreign_keys="Follow.user_id", back_populates="user",
        cascade="all, delete-orphan",
    )
    # Edges where this user is being followed
    follower_relationships = relationship(
        "Follow", foreign_keys="Follow.following_user_id", back_populates="following_user",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User id={self.id} name={self.name!r}>"


class SleepRecord(Base):
    """
    One sleep session.

    active:    bedtime set, wake_time NULL, duration_minutes NULL
    completed: bedtime and wake_time set, duration_minutes computed at clock-out
    """
    __tablename__ = "sleep_records"
    __table_args__ = (
        Index("idx_sleep_records_bedtime", "bedtime"),
        Index("idx_sleep_records_user_bedtime", "user_id", "bedtime"),
        Index(
            "idx_sleep_records_user_completed", "user_id", "bedtime",
            postgresql_where=text("wake_time IS NOT NULL"),
            sqlite_where=text("wake_time IS NOT NULL"),
        ),
        Index(
            "idx_sleep_records_active", "user_id", unique=True,
            postgresql_where=text("wake_time IS NULL"),
            sqlite_where=text("wake_time IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    bedtime = Column(UTCDateTime, nullable=False)
    wake_time = Column(UTCDateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="sleep_records")

    @property
    def active(self) -> bool:
        return self.wake_time is None

    @property
    def completed(self) -> bool:
        return self.bedtime is not None and self.wake_time is not None

    @property
    def complete_record(self) -> bool:
        return self.completed and self.duration_minutes is not None

    @property
    def sleep_date(self):
        return self.bedtime.date() if self.bedtime else None

    @property
    def formatted_duration(self) -> Optional[str]:
        return format_duration(self.duration_minutes)

    def __repr__(self):
        return f"<SleepRecord id={self.id} user_id={self.user_id} bedtime={self.bedtime} wake_time={self.wake_time}>"


class Follow(Base):
    """Directed edge: user_id follows following_user_id."""
    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("user_id", "following_user_id", name="uq_follows_user_following"),
        CheckConstraint("user_id <> following_user_id", name="ck_follows_not_self"),
        Index("idx_follows_user_created", "user_id", "created_at"),
        Index("idx_follows_following_created", "following_user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    following_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id], back_populates="follows")
    following_user = relationship("User", foreign_keys=[following_user_id], back_populates="follower_relationships")

    def __repr__(self):
        return f"<Follow {self.user_id} -> {self.following_user_id}>"


def format_duration(minutes: Optional[int]) -> Optional[str]:
    """450 -> '7h 30m'."""
    if minutes is None:
        return None
    hours, rest = divmod(int(minutes), 60)
    return f"{hours}h {rest}m"
