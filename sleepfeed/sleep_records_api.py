"""
Sleep record endpoints: clock in/out, history, current session and
personal statistics.

Static paths (/current, /statistics) are declared before /{record_id}.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from sleepfeed.dependencies import get_current_user, get_sleep_service
from sleepfeed.models import User
from sleepfeed.schemas import (
    ClockInRequest,
    ClockOutRequest,
    PageInfo,
    SleepRecordListResponse,
    SleepRecordResponse,
    SleepStatistics,
)
from sleepfeed.sleep_sessions import SleepSessionService

router = APIRouter(prefix="/api/v1/sleep_records", tags=["sleep_records"])


@router.post("", response_model=SleepRecordResponse, status_code=201)
def clock_in(
    request: Optional[ClockInRequest] = Body(None),
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    """Start a sleep session (bedtime defaults to now)."""
    bedtime = request.bedtime if request else None
    return SleepRecordResponse.from_record(service.clock_in(user, bedtime))


@router.get("", response_model=SleepRecordListResponse)
def list_records(
    completed: bool = Query(False),
    active: bool = Query(False),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    records, total, limit, offset = service.list_records(
        user, completed=completed, active=active, limit=limit, offset=offset
    )
    return SleepRecordListResponse(
        sleep_records=[SleepRecordResponse.from_record(r) for r in records],
        pagination=PageInfo(total_count=total, limit=limit, offset=offset, has_more=offset + limit < total),
    )


@router.get("/current", response_model=SleepRecordResponse)
def current_session(
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    return SleepRecordResponse.from_record(service.current_session(user))


@router.get("/statistics", response_model=SleepStatistics)
def statistics(
    days: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    return service.statistics(user, days)


@router.get("/{record_id}", response_model=SleepRecordResponse)
def show_record(
    record_id: int,
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    return SleepRecordResponse.from_record(service.get_record(user, record_id))


@router.patch("/{record_id}", response_model=SleepRecordResponse)
def clock_out(
    record_id: int,
    request: Optional[ClockOutRequest] = Body(None),
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    """End the active session (wake_time defaults to now)."""
    wake_time = request.wake_time if request else None
    return SleepRecordResponse.from_record(service.clock_out(user, record_id, wake_time))


@router.delete("/{record_id}", status_code=204, response_class=Response)
def delete_record(
    record_id: int,
    user: User = Depends(get_current_user),
    service: SleepSessionService = Depends(get_sleep_service),
):
    service.delete_record(user, record_id)
    return Response(status_code=204)
