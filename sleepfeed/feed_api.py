"""
Social feed endpoints: completed sleep records of followed users.

Parameters are validated strictly here (400 with a specific code) even
though the query layer would quietly fall back to defaults.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from sleepfeed.dependencies import get_current_user, get_feed_service
from sleepfeed.models import User
from sleepfeed.schemas import FeedStatistics, SocialFeedResponse
from sleepfeed.social_feed import SocialFeedService
from sleepfeed.validation import validate_feed_params

router = APIRouter(prefix="/api/v1/following/sleep_records", tags=["social_feed"])


@router.get("", response_model=SocialFeedResponse)
def social_feed(
    days: Optional[int] = Query(None, description="Lookback window, 1-30 days (default 7)"),
    sort_by: Optional[str] = Query(None, description="duration | bedtime | wake_time | created_at"),
    limit: Optional[int] = Query(None, description="Page size, 1-100 (default 20)"),
    offset: Optional[int] = Query(None, description="Records to skip (default 0)"),
    user: User = Depends(get_current_user),
    service: SocialFeedService = Depends(get_feed_service),
):
    params = validate_feed_params(days, sort_by, limit, offset)
    return service.feed(user, params.days, params.sort_by, params.limit, params.offset)


@router.get("/statistics", response_model=FeedStatistics)
def social_statistics(
    days: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    service: SocialFeedService = Depends(get_feed_service),
):
    return service.statistics(user, days)
