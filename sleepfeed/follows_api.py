"""
Follow graph endpoints: follow, unfollow and the two list directions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from sleepfeed.dependencies import get_current_user, get_follow_service
from sleepfeed.follows import FollowService
from sleepfeed.models import User
from sleepfeed.schemas import FollowersListResponse, FollowingListResponse, FollowRequest, FollowResponse

router = APIRouter(prefix="/api/v1", tags=["follows"])


@router.post("/follows", response_model=FollowResponse, status_code=201)
def follow(
    request: FollowRequest,
    user: User = Depends(get_current_user),
    service: FollowService = Depends(get_follow_service),
):
    return service.follow(user, request.following_user_id)


@router.get("/follows", response_model=FollowingListResponse)
def following(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    service: FollowService = Depends(get_follow_service),
):
    """Users the caller follows, newest edge first."""
    return service.following_page(user, limit, offset)


@router.delete("/follows/{user_id}", status_code=204, response_class=Response)
def unfollow(
    user_id: int,
    user: User = Depends(get_current_user),
    service: FollowService = Depends(get_follow_service),
):
    service.unfollow(user, user_id)
    return Response(status_code=204)


@router.get("/followers", response_model=FollowersListResponse)
def followers(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    service: FollowService = Depends(get_follow_service),
):
    """Users following the caller, newest edge first."""
    return service.followers_page(user, limit, offset)
