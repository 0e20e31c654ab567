"""
User endpoints.

POST /api/v1/users is an unauthenticated convenience for local setups and
tests; it is switched off in production.
"""

from fastapi import APIRouter, Depends, Response

from sleepfeed.config import Settings
from sleepfeed.dependencies import get_current_user, get_settings_dep, get_user_service
from sleepfeed.errors import ForbiddenError
from sleepfeed.models import User
from sleepfeed.schemas import UserCreateRequest, UserProfileResponse, UserResponse
from sleepfeed.users import UserService

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    request: UserCreateRequest,
    settings: Settings = Depends(get_settings_dep),
    service: UserService = Depends(get_user_service),
):
    if settings.is_production:
        raise ForbiddenError("User creation is not available in production")
    return UserResponse.from_user(service.create_user(request.name))


@router.get("/me", response_model=UserProfileResponse)
def get_me(user: User = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    """Caller's profile with (cached) following/followers counts."""
    return service.profile(user)


@router.delete("/me", status_code=204, response_class=Response)
def delete_me(user: User = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    service.delete_user(user)
    return Response(status_code=204)
