"""
FastAPI dependencies: per-request database session, the shared cache and
metrics collaborators, the authenticated caller and the services built
from them.

Everything shared is read from app.state, which create_app() populates.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from sleepfeed.cache import CacheClient
from sleepfeed.cache_admin import CacheAdmin
from sleepfeed.config import Settings
from sleepfeed.errors import AuthenticationError, ForbiddenError, user_not_found
from sleepfeed.follows import FollowService
from sleepfeed.logger import get_logger
from sleepfeed.metrics import QueryCounter, count_queries
from sleepfeed.models import User
from sleepfeed.sleep_sessions import SleepSessionService
from sleepfeed.social_feed import SocialFeedService
from sleepfeed.users import UserService

logger = get_logger("dependencies")


UNMATCHED_ROUTE = "<unmatched>"


def endpoint_name(request: Request) -> str:
    """
    "GET /api/v1/sleep_records/{record_id}" style label (route template, not raw path).

    Requests that match no route share one "<METHOD> <unmatched>" label so
    arbitrary URLs cannot grow the metrics maps.
    """
    route = request.scope.get("route")
    path = getattr(route, "path", None) or UNMATCHED_ROUTE
    return f"{request.method} {path}"


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> CacheClient:
    return request.app.state.cache


def get_db(request: Request):
    """
    Dependency for FastAPI endpoints to get a database session.

    Counts the ORM statements the request runs and reports them to the
    metrics collector; going over the configured threshold logs a warning.
    """
    db = request.app.state.session_factory()
    counter: Optional[QueryCounter] = None
    try:
        with count_queries(db) as counter:
            yield db
    finally:
        db.close()
        if counter is not None:
            _report_queries(request, counter)


def _report_queries(request: Request, counter: QueryCounter) -> None:
    endpoint = endpoint_name(request)
    request.app.state.metrics.record_queries(endpoint, counter.count)
    threshold = request.app.state.settings.slow_query_threshold
    if counter.count > threshold:
        logger.warning(
            "HIGH QUERY COUNT: %s executed %s statements (threshold %s)\n%s",
            endpoint, counter.count, threshold, "\n".join(counter.statements),
        )


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-USER-ID"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the X-USER-ID header to a User."""
    if x_user_id is None or not x_user_id.strip():
        raise AuthenticationError("X-USER-ID header is required", code="MISSING_USER_ID")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise user_not_found() from None

    user = db.get(User, user_id)
    if user is None:
        raise user_not_found()
    return user


def require_admin(settings: Settings = Depends(get_settings_dep)) -> None:
    if not settings.admin_enabled:
        raise ForbiddenError("Cache admin endpoints are disabled", code="FORBIDDEN")


#
# Services
#

def get_sleep_service(db: Session = Depends(get_db), cache: CacheClient = Depends(get_cache)) -> SleepSessionService:
    return SleepSessionService(db, cache)


def get_follow_service(db: Session = Depends(get_db), cache: CacheClient = Depends(get_cache)) -> FollowService:
    return FollowService(db, cache)


def get_feed_service(db: Session = Depends(get_db), cache: CacheClient = Depends(get_cache)) -> SocialFeedService:
    return SocialFeedService(db, cache)


def get_user_service(db: Session = Depends(get_db), cache: CacheClient = Depends(get_cache)) -> UserService:
    return UserService(db, cache)


def get_cache_admin(db: Session = Depends(get_db), cache: CacheClient = Depends(get_cache)) -> CacheAdmin:
    return CacheAdmin(db, cache)
