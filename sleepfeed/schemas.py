"""
Pydantic v2 schemas for request/response validation.

All request schemas use extra="forbid" to reject unknown fields.
Error responses share one envelope: {"error", "error_code", "details"}.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sleepfeed.models import SleepRecord, User


#
# Error envelope
#

class ErrorResponse(BaseModel):
    error: str = Field(..., description="Human-readable message")
    error_code: str = Field(..., description="Stable machine-readable code")
    details: Optional[Dict[str, Any]] = Field(None, description="Field-level or structured detail")


#
# Request Schemas
#

class UserCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(..., min_length=1, max_length=100, description="Display name")


class ClockInRequest(BaseModel):
    """Start a sleep session. bedtime defaults to now."""
    model_config = ConfigDict(extra="forbid")
    bedtime: Optional[datetime] = None


class ClockOutRequest(BaseModel):
    """End the active session. wake_time defaults to now."""
    model_config = ConfigDict(extra="forbid")
    wake_time: Optional[datetime] = None


class FollowRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    following_user_id: int = Field(..., description="User to follow")


#
# Users
#

class UserResponse(BaseModel):
    id: int
    name: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.id, name=user.name, created_at=user.created_at)


class UserProfileResponse(UserResponse):
    following_count: int
    followers_count: int


#
# Sleep records
#

class SleepRecordResponse(BaseModel):
    id: int
    user_id: int
    bedtime: datetime
    wake_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: SleepRecord) -> "SleepRecordResponse":
        return cls(
            id=record.id,
            user_id=record.user_id,
            bedtime=record.bedtime,
            wake_time=record.wake_time,
            duration_minutes=record.duration_minutes,
            active=record.active,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class PageInfo(BaseModel):
    total_count: int
    limit: int
    offset: int
    has_more: bool


class SleepRecordListResponse(BaseModel):
    sleep_records: List[SleepRecordResponse]
    pagination: PageInfo


class SleepStatistics(BaseModel):
    """A user's own completed sessions over a window."""
    total_records: int = 0
    average_duration: float = 0
    total_sleep_time: int = 0
    longest_sleep: int = 0
    shortest_sleep: int = 0


#
# Follow graph
#

class FollowResponse(BaseModel):
    id: int
    following_user_id: int
    following_user_name: str
    created_at: datetime


class FollowedUser(BaseModel):
    id: int
    name: str
    followed_at: datetime


class CacheInfo(BaseModel):
    cached: bool
    cache_key: str


class FollowingListResponse(BaseModel):
    following: List[FollowedUser]
    pagination: PageInfo
    cache_info: CacheInfo


class FollowersListResponse(BaseModel):
    followers: List[FollowedUser]
    pagination: PageInfo
    cache_info: CacheInfo


#
# Social feed
#

class FeedRecord(BaseModel):
    id: int
    user_id: int
    user_name: str
    bedtime: datetime
    wake_time: datetime
    duration_minutes: int
    formatted_duration: str
    sleep_date: date
    created_at: datetime
    record_complete: bool

    @classmethod
    def from_row(cls, record: SleepRecord, user_name: str) -> "FeedRecord":
        return cls(
            id=record.id,
            user_id=record.user_id,
            user_name=user_name,
            bedtime=record.bedtime,
            wake_time=record.wake_time,
            duration_minutes=record.duration_minutes,
            formatted_duration=record.formatted_duration,
            sleep_date=record.sleep_date,
            created_at=record.created_at,
            record_complete=record.complete_record,
        )


class FeedPagination(BaseModel):
    total_count: int
    current_count: int
    limit: int
    offset: int
    has_more: bool
    next_offset: Optional[int] = None
    previous_offset: Optional[int] = None


class DurationStats(BaseModel):
    average_minutes: float = 0
    longest_minutes: int = 0
    shortest_minutes: int = 0
    total_sleep_hours: float = 0


class FeedStatistics(BaseModel):
    total_records: int = 0
    unique_users: int = 0
    duration_stats: DurationStats = Field(default_factory=DurationStats)


class DateRange(BaseModel):
    days_back: int
    from_date: date
    to_date: date


class Sorting(BaseModel):
    sort_by: str


class PrivacyInfo(BaseModel):
    data_source: str = "followed_users"
    record_types: str = "completed_only"
    your_records_included: bool = False
    following_count: int


class SocialFeedResponse(BaseModel):
    sleep_records: List[FeedRecord]
    pagination: FeedPagination
    statistics: FeedStatistics
    date_range: DateRange
    sorting: Sorting
    privacy_info: PrivacyInfo
    message: Optional[str] = None


#
# Cache admin
#

class CacheDebugEntry(BaseModel):
    key: str
    exists: bool
    data_type: str
    data_size: Any


class CacheDebugResponse(BaseModel):
    user_id: int
    user_name: str
    cache_debug: List[CacheDebugEntry]
    cache_stats: Dict[str, Any]
