"""
Cache administration endpoints for operators.

Enabled outside production by default (ENABLE_ADMIN_ENDPOINTS overrides).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from sleepfeed.cache_admin import CacheAdmin
from sleepfeed.dependencies import get_cache_admin, require_admin
from sleepfeed.schemas import CacheDebugResponse

router = APIRouter(
    prefix="/api/v1/admin/cache",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/stats")
def cache_stats(admin: CacheAdmin = Depends(get_cache_admin)):
    return {"cache_stats": admin.stats()}


@router.post("/clear")
def clear_cache(
    pattern: Optional[str] = Query(None, description="Cache category (with user_id) or raw glob"),
    user_id: Optional[int] = Query(None),
    admin: CacheAdmin = Depends(get_cache_admin),
):
    result = admin.clear(pattern=pattern, user_id=user_id)
    return {**result, "cache_stats": admin.stats()}


@router.post("/warm")
def warm_cache(
    user_id: Optional[int] = Query(None, description="Warm one user; all users when omitted"),
    admin: CacheAdmin = Depends(get_cache_admin),
):
    if user_id is None:
        warmed = admin.warm_all()
        return {"message": f"Cache warmed for {warmed} users", "warmed_users": warmed}

    keys = admin.warm_user_id(user_id)
    return {"message": f"Cache warmed for user {user_id}", "warmed_keys": keys}


@router.get("/debug", response_model=CacheDebugResponse)
def debug_cache(
    user_id: int = Query(..., description="User whose keys to inspect"),
    admin: CacheAdmin = Depends(get_cache_admin),
):
    return admin.debug(user_id)
