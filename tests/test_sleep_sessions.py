"""
Tests for the sleep session state machine: clock in, clock out, visibility,
history and personal statistics.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from sleepfeed.errors import ConflictError, InvalidParameterError, NotFoundError, RecordValidationError
from sleepfeed.metrics import count_queries
from sleepfeed.models import SleepRecord
from sleepfeed.sleep_sessions import SleepSessionService

from tests.conftest import NOW, fixed_clock


@pytest.fixture
def service(db, cache):
    return SleepSessionService(db, cache, clock=fixed_clock)


@pytest.fixture
def alice(make_user):
    return make_user("alice")


# ── Clock in ─────────────────────────────────────────────────────────────

class TestClockIn:
    def test_defaults_to_now(self, service, alice):
        record = service.clock_in(alice)
        assert record.bedtime == NOW
        assert record.active
        assert record.duration_minutes is None

    def test_explicit_bedtime(self, service, alice):
        record = service.clock_in(alice, NOW - timedelta(hours=2))
        assert record.bedtime == NOW - timedelta(hours=2)

    def test_second_active_session_rejected(self, service, alice):
        first = service.clock_in(alice, NOW - timedelta(hours=1))
        with pytest.raises(ConflictError) as exc:
            service.clock_in(alice)
        assert exc.value.code == "ACTIVE_SESSION_EXISTS"
        assert exc.value.details == {"active_session_id": first.id}

    def test_future_bedtime_rejected(self, service, alice):
        with pytest.raises(RecordValidationError) as exc:
            service.clock_in(alice, NOW + timedelta(minutes=5))
        assert "bedtime" in exc.value.details

    def test_overlap_with_completed_session(self, service, alice, make_record):
        make_record(alice, NOW - timedelta(hours=8), minutes=7 * 60)
        with pytest.raises(RecordValidationError) as exc:
            service.clock_in(alice, NOW - timedelta(hours=2))
        assert exc.value.details == {"bedtime": ["overlaps with an existing sleep session"]}

    def test_after_completed_session(self, service, alice, make_record):
        make_record(alice, NOW - timedelta(hours=20), minutes=8 * 60)
        record = service.clock_in(alice, NOW - timedelta(hours=1))
        assert record.active

    def test_users_are_independent(self, service, alice, make_user):
        bob = make_user("bob")
        service.clock_in(alice)
        assert service.clock_in(bob).active

    def test_store_allows_one_active_session_per_user(self, db, alice):
        db.add(SleepRecord(user_id=alice.id, bedtime=NOW - timedelta(hours=3)))
        db.commit()
        db.add(SleepRecord(user_id=alice.id, bedtime=NOW - timedelta(hours=1)))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_concurrent_clock_in_reports_active_session(self, service, db, alice, make_record):
        # Another request committed an active session after our check ran
        other = make_record(alice, NOW - timedelta(hours=1))
        service.active_session = MagicMock(side_effect=[None, other])

        with pytest.raises(ConflictError) as exc:
            service.clock_in(alice, NOW - timedelta(hours=3))

        assert exc.value.code == "ACTIVE_SESSION_EXISTS"
        assert exc.value.details == {"active_session_id": other.id}
        assert db.query(SleepRecord).filter_by(user_id=alice.id).count() == 1


# ── Clock out ────────────────────────────────────────────────────────────

class TestClockOut:
    def test_completes_session(self, service, alice):
        record = service.clock_in(alice, NOW - timedelta(hours=8))
        done = service.clock_out(alice, record.id, NOW - timedelta(minutes=30))
        assert done.wake_time == NOW - timedelta(minutes=30)
        assert done.duration_minutes == 450
        assert done.completed
        assert done.formatted_duration == "7h 30m"

    def test_wake_time_defaults_to_now(self, service, alice):
        record = service.clock_in(alice, NOW - timedelta(hours=6))
        assert service.clock_out(alice, record.id).duration_minutes == 360

    def test_already_completed(self, service, alice, make_record):
        record = make_record(alice, NOW - timedelta(hours=8), minutes=400)
        with pytest.raises(ConflictError) as exc:
            service.clock_out(alice, record.id)
        assert exc.value.code == "NO_ACTIVE_SESSION"

    def test_other_users_record(self, service, alice, make_user, make_record):
        record = make_record(make_user("bob"), NOW - timedelta(hours=3))
        with pytest.raises(NotFoundError) as exc:
            service.clock_out(alice, record.id)
        assert exc.value.code == "NOT_FOUND"

    def test_missing_record(self, service, alice):
        with pytest.raises(NotFoundError):
            service.clock_out(alice, 999)

    def test_wake_before_bedtime(self, service, alice):
        record = service.clock_in(alice, NOW - timedelta(hours=2))
        with pytest.raises(RecordValidationError) as exc:
            service.clock_out(alice, record.id, NOW - timedelta(hours=3))
        assert exc.value.details == {"wake_time": ["must be after bedtime"]}

    def test_too_long(self, service, alice, make_record):
        record = make_record(alice, NOW - timedelta(hours=30))
        with pytest.raises(RecordValidationError):
            service.clock_out(alice, record.id, NOW)

    def test_running_into_later_session(self, service, alice, make_record):
        record = make_record(alice, NOW - timedelta(hours=10))
        make_record(alice, NOW - timedelta(hours=5), minutes=60)
        with pytest.raises(RecordValidationError) as exc:
            service.clock_out(alice, record.id, NOW - timedelta(hours=3))
        assert exc.value.details == {"wake_time": ["overlaps with a later sleep session"]}

    def test_invalidates_own_statistics(self, service, alice, redis_client):
        redis_client.store[f"sleep_statistics:user:{alice.id}:7_days"] = "{}"
        redis_client.store[f"sleep_statistics:user:{alice.id}:30_days"] = "{}"
        redis_client.store["sleep_statistics:user:999:7_days"] = "{}"

        record = service.clock_in(alice, NOW - timedelta(hours=8))
        service.clock_out(alice, record.id)

        assert set(redis_client.store) == {"sleep_statistics:user:999:7_days"}


# ── Reads ────────────────────────────────────────────────────────────────

class TestReads:
    def test_current_session(self, service, alice):
        record = service.clock_in(alice, NOW - timedelta(hours=1))
        assert service.current_session(alice).id == record.id

    def test_no_current_session(self, service, alice):
        with pytest.raises(NotFoundError) as exc:
            service.current_session(alice)
        assert exc.value.code == "NO_ACTIVE_SESSION"

    def test_owner_can_view(self, service, alice, make_record):
        record = make_record(alice, NOW - timedelta(hours=8), minutes=420)
        assert service.get_record(alice, record.id).id == record.id

    def test_follower_can_view(self, service, alice, make_user, make_record, make_follow):
        bob = make_user("bob")
        record = make_record(bob, NOW - timedelta(hours=8), minutes=420)
        make_follow(alice, bob)
        assert service.get_record(alice, record.id).id == record.id

    def test_stranger_cannot_view(self, service, alice, make_user, make_record, make_follow):
        bob = make_user("bob")
        record = make_record(bob, NOW - timedelta(hours=8), minutes=420)
        make_follow(bob, alice)  # wrong direction
        with pytest.raises(NotFoundError):
            service.get_record(alice, record.id)

    def test_list_newest_first_with_filters(self, service, alice, make_record):
        old = make_record(alice, NOW - timedelta(days=2), minutes=480)
        recent = make_record(alice, NOW - timedelta(days=1), minutes=420)
        active = make_record(alice, NOW - timedelta(hours=2))

        records, total, limit, offset = service.list_records(alice)
        assert [r.id for r in records] == [active.id, recent.id, old.id]
        assert (total, limit, offset) == (3, 20, 0)

        records, total, _, _ = service.list_records(alice, completed=True)
        assert [r.id for r in records] == [recent.id, old.id]
        assert total == 2

        records, total, _, _ = service.list_records(alice, active=True)
        assert [r.id for r in records] == [active.id]

    def test_list_pagination(self, service, alice, make_record):
        for day in range(1, 6):
            make_record(alice, NOW - timedelta(days=day), minutes=400)
        records, total, limit, offset = service.list_records(alice, limit=2, offset=2)
        assert len(records) == 2
        assert (total, limit, offset) == (5, 2, 2)

    def test_delete_record(self, service, db, alice, make_record, redis_client):
        record = make_record(alice, NOW - timedelta(hours=8), minutes=420)
        redis_client.store[f"sleep_statistics:user:{alice.id}:7_days"] = "{}"

        service.delete_record(alice, record.id)

        assert db.get(SleepRecord, record.id) is None
        assert redis_client.store == {}

    def test_cannot_delete_others_record(self, service, alice, make_user, make_record):
        record = make_record(make_user("bob"), NOW - timedelta(hours=8), minutes=420)
        with pytest.raises(NotFoundError):
            service.delete_record(alice, record.id)


# ── Statistics ───────────────────────────────────────────────────────────

class TestStatistics:
    def test_window_and_aggregates(self, service, alice, make_record):
        make_record(alice, NOW - timedelta(days=1), minutes=420)
        make_record(alice, NOW - timedelta(days=2), minutes=481)
        make_record(alice, NOW - timedelta(days=10), minutes=600)  # outside 7 days
        make_record(alice, NOW - timedelta(hours=1))               # active

        stats = service.statistics(alice, 7)

        assert stats.total_records == 2
        assert stats.average_duration == 450.5
        assert stats.total_sleep_time == 901
        assert stats.longest_sleep == 481
        assert stats.shortest_sleep == 420

    def test_empty(self, service, alice):
        stats = service.statistics(alice)
        assert stats.total_records == 0
        assert stats.average_duration == 0

    def test_cached_per_window(self, service, db, alice, make_record, redis_client):
        make_record(alice, NOW - timedelta(days=1), minutes=420)
        service.statistics(alice, 7)
        assert f"sleep_statistics:user:{alice.id}:7_days" in redis_client.store
        assert redis_client.ttls[f"sleep_statistics:user:{alice.id}:7_days"] == 1800

        with count_queries(db) as counter:
            service.statistics(alice, 7)
        assert counter.count == 0

    def test_days_validated(self, service, alice):
        with pytest.raises(InvalidParameterError) as exc:
            service.statistics(alice, 31)
        assert exc.value.code == "INVALID_DATE_RANGE"
