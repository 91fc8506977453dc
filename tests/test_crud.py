from datetime import datetime, timedelta

import pytest
from listing_monitor import crud
from listing_monitor.models import STATUS_ACTIVE, STATUS_INACTIVE


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _user(db, email="a@example.com", last_login_at=None):
    return crud.create_user(db, email, max_active_monitors=2, max_api_calls_per_hour=10,
                            max_notifications_per_day=5, last_login_at=last_login_at)


def test_create_and_get_monitor(db):
    user = _user(db)
    monitor = crud.create_monitor(db, user.id, {"keywords": ["iphone"], "min_price": 100}, 1_800_000)
    obj = crud.get_monitor(db, monitor.id)
    assert obj is not None
    assert obj.keywords == ["iphone"]
    assert obj.excluded_keywords == []
    assert obj.status == STATUS_INACTIVE
    assert obj.api_call_count == 0


def test_record_poll_increments_api_call_count(db):
    user = _user(db)
    monitor = crud.create_monitor(db, user.id, {"keywords": ["ps5"]}, 60_000)
    checked = datetime(2026, 1, 1, 9, 30)
    crud.record_poll(db, monitor.id, checked, 7)
    crud.record_poll(db, monitor.id, checked, 8)
    db.expire_all()
    obj = crud.get_monitor(db, monitor.id)
    assert obj.api_call_count == 2
    assert obj.last_result_count == 8
    assert obj.last_check_time == checked


def test_count_and_ids_of_active_monitors(db):
    user = _user(db)
    first = crud.create_monitor(db, user.id, {"keywords": ["a"]}, 60_000)
    crud.create_monitor(db, user.id, {"keywords": ["b"]}, 60_000)
    crud.set_status(db, first.id, STATUS_ACTIVE)
    assert crud.count_active_monitors(db, user.id) == 1
    assert crud.active_monitor_ids(db) == {first.id}


def test_active_monitors_of_inactive_users(db):
    now = datetime(2026, 3, 10)
    stale = _user(db, "stale@example.com", last_login_at=now - timedelta(days=4))
    fresh = _user(db, "fresh@example.com", last_login_at=now - timedelta(hours=2))
    stale_active = crud.create_monitor(db, stale.id, {"keywords": ["x"]}, 60_000)
    crud.create_monitor(db, stale.id, {"keywords": ["y"]}, 60_000)
    fresh_active = crud.create_monitor(db, fresh.id, {"keywords": ["z"]}, 60_000)
    crud.set_status(db, stale_active.id, STATUS_ACTIVE)
    crud.set_status(db, fresh_active.id, STATUS_ACTIVE)

    found = crud.active_monitors_of_inactive_users(db, now - timedelta(days=3))
    assert [m.id for m in found] == [stale_active.id]


def test_delete_missing_monitor_returns_false(db):
    assert crud.delete_monitor(db, 404) is False


def test_record_poll_leaves_next_check_of_inactive_monitor(db):
    user = _user(db)
    monitor = crud.create_monitor(db, user.id, {"keywords": ["ps5"]}, 60_000)
    crud.set_status(db, monitor.id, STATUS_ACTIVE, next_check_at=datetime(2026, 1, 1, 9, 0))
    crud.record_poll(db, monitor.id, datetime(2026, 1, 1, 9, 0), 3, datetime(2026, 1, 1, 9, 1))
    db.expire_all()
    assert crud.get_monitor(db, monitor.id).next_check_at == datetime(2026, 1, 1, 9, 1)

    crud.set_status(db, monitor.id, STATUS_INACTIVE, next_check_at=None)
    crud.record_poll(db, monitor.id, datetime(2026, 1, 1, 9, 1), 4, datetime(2026, 1, 1, 9, 2))
    db.expire_all()
    obj = crud.get_monitor(db, monitor.id)
    assert obj.next_check_at is None
    assert obj.api_call_count == 2
    assert obj.last_result_count == 4


def test_set_next_check_at_only_touches_active_monitors(db):
    user = _user(db)
    monitor = crud.create_monitor(db, user.id, {"keywords": ["ps5"]}, 60_000)
    when = datetime(2026, 1, 1, 10, 0)
    assert crud.set_next_check_at(db, monitor.id, when) is False
    crud.set_status(db, monitor.id, STATUS_ACTIVE)
    assert crud.set_next_check_at(db, monitor.id, when) is True
    db.expire_all()
    assert crud.get_monitor(db, monitor.id).next_check_at == when


def test_activate_within_quota(db):
    user = _user(db)
    first, second, third = (crud.create_monitor(db, user.id, {"keywords": [k]}, 60_000) for k in "abc")
    assert crud.activate_within_quota(db, first.id, user.id) is True
    assert crud.activate_within_quota(db, first.id, user.id) is False
    assert crud.activate_within_quota(db, second.id, user.id) is True
    assert crud.activate_within_quota(db, third.id, user.id) is False
    db.expire_all()
    assert crud.count_active_monitors(db, user.id) == 2
    assert crud.get_monitor(db, third.id).status == STATUS_INACTIVE
