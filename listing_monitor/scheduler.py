"""Job scheduler backed by APScheduler.

Every active monitor owns exactly one recurring entry keyed `monitor:<id>`.
Installing an entry always removes the previous one first, under a lock per
monitor id, so concurrent upserts for the same monitor end with one entry
carrying the interval of whichever install ran last. Failed polls are
re-attempted through a one-shot `monitor:<id>:retry` entry, which is purged
together with the schedule.
"""
import re
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from .config import Settings
from .jobs import PollMonitor, DisableInactiveMonitors, CleanupOrphanedSchedules, to_kwargs
from .utils import get_logger

logger = get_logger(__name__)

# resolved by APScheduler on load; a textual reference keeps the job store picklable
DISPATCH_REF = "listing_monitor.runtime:dispatch"

INACTIVE_SWEEP_ID = "maintenance:disable-inactive-monitors"
ORPHAN_SWEEP_ID = "maintenance:cleanup-orphaned-schedules"

_MONITOR_JOB = re.compile(r"^monitor:(\d+)$")


def schedule_id(monitor_id: int) -> str:
    return f"monitor:{monitor_id}"


def retry_id(monitor_id: int) -> str:
    return f"monitor:{monitor_id}:retry"


def parse_schedule_id(job_id: str) -> Optional[int]:
    m = _MONITOR_JOB.match(job_id)
    return int(m.group(1)) if m else None


def _naive_utc(when: Optional[datetime]) -> Optional[datetime]:
    if when is None:
        return None
    return when.astimezone(timezone.utc).replace(tzinfo=None)


class JobScheduler:
    def __init__(self, scheduler: BackgroundScheduler):
        self._scheduler = scheduler
        self._locks = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    @classmethod
    def create(cls, settings: Settings, engine=None) -> "JobScheduler":
        jobstore = SQLAlchemyJobStore(engine=engine) if engine is not None else SQLAlchemyJobStore(url=settings.database_url)
        scheduler = BackgroundScheduler(
            jobstores={"default": jobstore},
            executors={"default": ThreadPoolExecutor(settings.worker_concurrency)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
            timezone=timezone.utc,
        )
        return cls(scheduler)

    def _lock_for(self, monitor_id: int) -> threading.RLock:
        with self._locks_guard:
            return self._locks[monitor_id]

    def _remove(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
            return True
        except JobLookupError:
            return False

    def start(self, paused: bool = False) -> None:
        self._scheduler.start(paused=paused)
        logger.info("Scheduler started%s", " (paused)" if paused else "")

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def _install(self, monitor_id: int, interval_ms: int) -> Optional[datetime]:
        job_id = schedule_id(monitor_id)
        replaced = self._remove(job_id)
        job = self._scheduler.add_job(
            DISPATCH_REF,
            trigger="interval",
            seconds=interval_ms / 1000,
            id=job_id,
            name=job_id,
            kwargs=to_kwargs(PollMonitor(monitor_id)),
        )
        logger.info("%s schedule %s every %sms", "Replaced" if replaced else "Installed", job_id, interval_ms)
        return _naive_utc(getattr(job, "next_run_time", None))

    def _uninstall(self, monitor_id: int) -> bool:
        job_id = schedule_id(monitor_id)
        found = self._remove(job_id)
        purged = self._remove(retry_id(monitor_id))
        if found or purged:
            logger.info("Removed schedule %s%s", job_id, " and its pending retry" if purged else "")
        return found

    def upsert_schedule(self, monitor_id: int, interval_ms: int) -> Optional[datetime]:
        with self._lock_for(monitor_id):
            return self._install(monitor_id, interval_ms)

    def remove_schedule(self, monitor_id: int) -> bool:
        with self._lock_for(monitor_id):
            return self._uninstall(monitor_id)

    def remove_schedule_if(self, monitor_id: int, predicate: Callable[[], bool]) -> bool:
        """Remove the schedule only if `predicate()` still holds once the monitor's lock is taken."""
        with self._lock_for(monitor_id):
            if not predicate():
                return False
            return self._uninstall(monitor_id)

    def restore_schedule(self, monitor_id: int, resolve_interval: Callable[[], Optional[int]]) -> bool:
        """Install a missing schedule under the monitor's lock.

        `resolve_interval` is read after the lock is taken; returning None
        (monitor gone or inactive) skips the install. An existing schedule is
        left untouched.
        """
        with self._lock_for(monitor_id):
            if self._scheduler.get_job(schedule_id(monitor_id)) is not None:
                return False
            interval_ms = resolve_interval()
            if interval_ms is None:
                return False
            self._install(monitor_id, interval_ms)
            return True

    def list_schedules(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs() if parse_schedule_id(job.id) is not None]

    def has_schedule(self, monitor_id: int) -> bool:
        return self._scheduler.get_job(schedule_id(monitor_id)) is not None

    def get_next_run(self, monitor_id: int) -> Optional[datetime]:
        job = self._scheduler.get_job(schedule_id(monitor_id))
        return _naive_utc(getattr(job, "next_run_time", None)) if job else None

    def schedule_retry(self, monitor_id: int, attempt: int, delay_ms: int) -> bool:
        """Queue attempt number `attempt` of a failed poll; skipped once the schedule is gone."""
        with self._lock_for(monitor_id):
            if self._scheduler.get_job(schedule_id(monitor_id)) is None:
                return False
            job_id = retry_id(monitor_id)
            self._scheduler.add_job(
                DISPATCH_REF,
                trigger="date",
                run_date=datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms),
                id=job_id,
                name=job_id,
                kwargs=to_kwargs(PollMonitor(monitor_id, attempt)),
                replace_existing=True,
            )
        return True

    def schedule_maintenance(self, inactive_interval_ms: int, orphan_interval_ms: int) -> None:
        for job_id, job, interval_ms in (
            (INACTIVE_SWEEP_ID, DisableInactiveMonitors(), inactive_interval_ms),
            (ORPHAN_SWEEP_ID, CleanupOrphanedSchedules(), orphan_interval_ms),
        ):
            self._scheduler.add_job(
                DISPATCH_REF,
                trigger="interval",
                seconds=interval_ms / 1000,
                id=job_id,
                name=job_id,
                kwargs=to_kwargs(job),
                replace_existing=True,
            )
            logger.info("Registered %s every %sms", job_id, interval_ms)
