"""Maintenance sweeps that keep the job store in line with the monitor store.

The monitor table is the source of truth. The sweeps disable monitors of
owners who stopped logging in, drop schedules that no active monitor backs,
and reinstall schedules that active monitors lost. One bad item never stops
a sweep.
"""
from datetime import timedelta
from typing import Callable, Optional
from . import crud
from .cache import SnapshotCache
from .db import SessionLocal, session_scope
from .errors import ScheduleDriftWarning
from .models import STATUS_ACTIVE, STATUS_INACTIVE
from .scheduler import JobScheduler, parse_schedule_id
from .schemas import SweepReport
from .utils import get_logger, utcnow

logger = get_logger(__name__)


def _drift(message: str, *args) -> None:
    warning = ScheduleDriftWarning(message % args)
    logger.warning("%s: %s", type(warning).__name__, warning)


class MaintenanceReconciler:
    def __init__(self, scheduler: JobScheduler, cache: SnapshotCache, session_factory=SessionLocal,
                 inactive_days: int = 3, clock: Callable = utcnow):
        self.scheduler = scheduler
        self.cache = cache
        self.session_factory = session_factory
        self.inactive_days = inactive_days
        self.clock = clock

    def disable_inactive_monitors(self) -> SweepReport:
        report = SweepReport()
        cutoff = self.clock() - timedelta(days=self.inactive_days)
        with session_scope(self.session_factory) as db:
            stale = [(m.id, m.user_id) for m in crud.active_monitors_of_inactive_users(db, cutoff)]
        for monitor_id, user_id in stale:
            try:
                with session_scope(self.session_factory) as db:
                    crud.set_status(db, monitor_id, STATUS_INACTIVE)
                # an owner who logs back in may reactivate before the removal
                self.scheduler.remove_schedule_if(monitor_id, lambda mid=monitor_id: not self._is_active(mid))
                self.cache.clear(monitor_id)
                report.disabled_monitors += 1
                logger.info("Disabled monitor %s of inactive user %s", monitor_id, user_id)
            except Exception:
                report.errors += 1
                logger.exception("Failed to disable monitor %s", monitor_id)
        logger.info("Inactive-owner sweep: %d monitor(s) disabled, %d error(s)",
                    report.disabled_monitors, report.errors)
        return report

    def _is_active(self, monitor_id: int) -> bool:
        with session_scope(self.session_factory) as db:
            monitor = crud.get_monitor(db, monitor_id)
            return monitor is not None and monitor.status == STATUS_ACTIVE

    def _active_interval(self, monitor_id: int) -> Optional[int]:
        with session_scope(self.session_factory) as db:
            monitor = crud.get_monitor(db, monitor_id)
            if monitor is None or monitor.status != STATUS_ACTIVE:
                return None
            return monitor.interval_ms

    def cleanup_orphaned_schedules(self) -> SweepReport:
        report = SweepReport()
        with session_scope(self.session_factory) as db:
            active = crud.active_monitor_ids(db)
        scheduled = set()
        for job_id in self.scheduler.list_schedules():
            monitor_id = parse_schedule_id(job_id)
            if monitor_id is None or monitor_id in scheduled:
                continue
            scheduled.add(monitor_id)
            if monitor_id in active:
                continue
            try:
                # the monitor may have been activated since `active` was read
                removed = self.scheduler.remove_schedule_if(
                    monitor_id, lambda mid=monitor_id: not self._is_active(mid)
                )
                if not removed:
                    continue
                self.cache.clear(monitor_id)
                report.orphans_removed += 1
                _drift("removed schedule %s with no active monitor", job_id)
            except Exception:
                report.errors += 1
                logger.exception("Failed to remove orphaned schedule %s", job_id)

        for monitor_id in sorted(active - scheduled):
            if self.scheduler.has_schedule(monitor_id):
                continue
            try:
                restored = self.scheduler.restore_schedule(
                    monitor_id, lambda mid=monitor_id: self._active_interval(mid)
                )
                if not restored:
                    continue
                with session_scope(self.session_factory) as db:
                    crud.set_next_check_at(db, monitor_id, self.scheduler.get_next_run(monitor_id))
                report.schedules_restored += 1
                _drift("reinstalled missing schedule for active monitor %s", monitor_id)
            except Exception:
                report.errors += 1
                logger.exception("Failed to reinstall schedule for monitor %s", monitor_id)

        try:
            report.expired_snapshots = self.cache.purge_expired()
        except Exception:
            report.errors += 1
            logger.exception("Failed to purge expired snapshots")
        logger.info("Orphan sweep: %d orphan(s) removed, %d schedule(s) restored, %d expired snapshot(s), %d error(s)",
                    report.orphans_removed, report.schedules_restored, report.expired_snapshots, report.errors)
        return report

    def run_maintenance_sweep(self) -> SweepReport:
        inactive = self.disable_inactive_monitors()
        orphans = self.cleanup_orphaned_schedules()
        return SweepReport(
            disabled_monitors=inactive.disabled_monitors,
            orphans_removed=orphans.orphans_removed,
            schedules_restored=orphans.schedules_restored,
            expired_snapshots=orphans.expired_snapshots,
            errors=inactive.errors + orphans.errors,
        )
