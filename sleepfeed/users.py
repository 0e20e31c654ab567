"""
User accounts: creation, lookup, profile and deletion.
"""

from sqlalchemy.orm import Session

from sleepfeed.cache import CacheClient
from sleepfeed.cache_admin import CacheAdmin
from sleepfeed.errors import user_not_found
from sleepfeed.follows import FollowService
from sleepfeed.logger import get_logger
from sleepfeed.models import User
from sleepfeed.queries import followed_ids_statement, follower_ids_statement
from sleepfeed.schemas import UserProfileResponse
from sleepfeed.validation import validate_user_name

logger = get_logger("users")


class UserService:
    def __init__(self, db: Session, cache: CacheClient):
        self.db = db
        self.cache = cache
        self.follows = FollowService(db, cache)

    def create_user(self, name: str) -> User:
        user = User(name=validate_user_name(name))
        self.db.add(user)
        self.db.commit()
        logger.info("Created user %s", user.id)

        # Warming is best-effort
        try:
            CacheAdmin(self.db, self.cache).warm_user(user)
        except Exception as e:
            self.db.rollback()
            logger.warning("Cache warm failed for new user %s: %s", user.id, e)
        return user

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise user_not_found()
        return user

    def profile(self, user: User) -> UserProfileResponse:
        return UserProfileResponse(
            id=user.id,
            name=user.name,
            created_at=user.created_at,
            following_count=self.follows.following_count(user.id),
            followers_count=self.follows.followers_count(user.id),
        )

    def delete_user(self, user: User) -> None:
        """Delete the user with their records and edges, then drop every affected cache entry."""
        followed_ids = list(self.db.scalars(followed_ids_statement(user.id)))
        follower_ids = list(self.db.scalars(follower_ids_statement(user.id)))
        user_id = user.id

        self.db.delete(user)
        self.db.commit()

        self.cache.invalidate_user(user_id)
        for followed_id in followed_ids:
            self.follows.invalidate_for_edge(user_id, followed_id)
        for follower_id in follower_ids:
            self.follows.invalidate_for_edge(follower_id, user_id)
        logger.info(
            "Deleted user %s (%s follows, %s followers)", user_id, len(followed_ids), len(follower_ids)
        )
