import threading

from listing_monitor.config import Settings
from listing_monitor.jobs import PollMonitor, from_kwargs
from listing_monitor.scheduler import (
    INACTIVE_SWEEP_ID, ORPHAN_SWEEP_ID, JobScheduler, parse_schedule_id, retry_id, schedule_id,
)


def _monitor_jobs(scheduler, monitor_id):
    prefix = schedule_id(monitor_id)
    return [j for j in scheduler._scheduler.get_jobs() if j.id == prefix or j.id.startswith(prefix + ":")]


def test_schedule_ids_round_trip():
    assert schedule_id(12) == "monitor:12"
    assert parse_schedule_id("monitor:12") == 12
    assert parse_schedule_id(retry_id(12)) is None
    assert parse_schedule_id(INACTIVE_SWEEP_ID) is None
    assert parse_schedule_id("monitor:abc") is None


def test_upsert_installs_one_schedule_with_latest_interval(scheduler):
    scheduler.upsert_schedule(7, 60_000)
    scheduler.upsert_schedule(7, 120_000)
    scheduler.upsert_schedule(7, 90_000)
    assert scheduler.list_schedules() == ["monitor:7"]
    job = scheduler._scheduler.get_job("monitor:7")
    assert job.trigger.interval.total_seconds() == 90
    assert from_kwargs(**job.kwargs) == PollMonitor(7)


def test_upsert_returns_next_run_as_naive_utc(scheduler):
    next_run = scheduler.upsert_schedule(3, 1_800_000)
    assert next_run is not None
    assert next_run.tzinfo is None
    assert scheduler.get_next_run(3) == next_run


def test_remove_schedule(scheduler):
    scheduler.upsert_schedule(1, 60_000)
    assert scheduler.remove_schedule(1) is True
    assert scheduler.list_schedules() == []
    assert scheduler.remove_schedule(1) is False
    assert scheduler.get_next_run(1) is None


def test_remove_purges_pending_retry(scheduler):
    scheduler.upsert_schedule(4, 60_000)
    assert scheduler.schedule_retry(4, attempt=2, delay_ms=1000) is True
    assert len(_monitor_jobs(scheduler, 4)) == 2
    scheduler.remove_schedule(4)
    assert _monitor_jobs(scheduler, 4) == []


def test_retry_not_queued_without_schedule(scheduler):
    assert scheduler.schedule_retry(5, attempt=2, delay_ms=1000) is False
    assert _monitor_jobs(scheduler, 5) == []


def test_retry_replaces_previous_retry(scheduler):
    scheduler.upsert_schedule(6, 60_000)
    scheduler.schedule_retry(6, attempt=2, delay_ms=1000)
    scheduler.schedule_retry(6, attempt=3, delay_ms=2000)
    retry = scheduler._scheduler.get_job(retry_id(6))
    assert from_kwargs(**retry.kwargs) == PollMonitor(6, attempt=3)


def test_list_schedules_ignores_maintenance_and_retries(scheduler):
    scheduler.schedule_maintenance(86_400_000, 43_200_000)
    scheduler.upsert_schedule(2, 60_000)
    scheduler.schedule_retry(2, attempt=2, delay_ms=1000)
    assert scheduler.list_schedules() == ["monitor:2"]
    assert scheduler._scheduler.get_job(INACTIVE_SWEEP_ID) is not None
    assert scheduler._scheduler.get_job(ORPHAN_SWEEP_ID) is not None


def test_maintenance_registration_is_idempotent(scheduler):
    scheduler.schedule_maintenance(86_400_000, 43_200_000)
    scheduler.schedule_maintenance(86_400_000, 43_200_000)
    ids = sorted(j.id for j in scheduler._scheduler.get_jobs())
    assert ids == sorted([INACTIVE_SWEEP_ID, ORPHAN_SWEEP_ID])


def test_concurrent_upserts_leave_one_schedule(scheduler):
    intervals = [60_000 + i * 1000 for i in range(20)]
    threads = [threading.Thread(target=scheduler.upsert_schedule, args=(9, ms)) for ms in intervals]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert scheduler.list_schedules() == ["monitor:9"]
    job = scheduler._scheduler.get_job("monitor:9")
    assert int(job.trigger.interval.total_seconds() * 1000) in intervals


def test_mixed_upserts_and_removals_never_duplicate(scheduler):
    ops = [("up", 60_000), ("up", 90_000), ("rm", None), ("up", 120_000), ("rm", None), ("rm", None),
           ("up", 61_000), ("up", 62_000)]
    for op, ms in ops:
        if op == "up":
            scheduler.upsert_schedule(11, ms)
        else:
            scheduler.remove_schedule(11)
        assert len([s for s in scheduler.list_schedules() if s == "monitor:11"]) <= 1
    assert scheduler.list_schedules() == ["monitor:11"]


def test_schedules_survive_restart_in_durable_store(tmp_path):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'jobs.db'}")
    first = JobScheduler.create(settings)
    first.start(paused=True)
    first.upsert_schedule(21, 60_000)
    first.shutdown(wait=False)

    second = JobScheduler.create(settings)
    second.start(paused=True)
    try:
        assert second.list_schedules() == ["monitor:21"]
        second.upsert_schedule(21, 120_000)
        assert second.list_schedules() == ["monitor:21"]
    finally:
        second.shutdown(wait=False)


def test_remove_schedule_if_honours_predicate(scheduler):
    scheduler.upsert_schedule(12, 60_000)
    scheduler.schedule_retry(12, attempt=2, delay_ms=1000)
    assert scheduler.remove_schedule_if(12, lambda: False) is False
    assert len(_monitor_jobs(scheduler, 12)) == 2
    assert scheduler.remove_schedule_if(12, lambda: True) is True
    assert _monitor_jobs(scheduler, 12) == []


def test_restore_schedule_only_fills_a_gap(scheduler):
    assert scheduler.restore_schedule(13, lambda: None) is False
    assert scheduler.list_schedules() == []
    assert scheduler.restore_schedule(13, lambda: 120_000) is True
    assert scheduler.restore_schedule(13, lambda: 60_000) is False
    job = scheduler._scheduler.get_job("monitor:13")
    assert job.trigger.interval.total_seconds() == 120
