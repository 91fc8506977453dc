"""Monitor lifecycle operations.

Every operation mutates the monitor row first and then the matching
schedule entry. A scheduler failure propagates to the caller; whatever drift
it leaves behind is repaired by the orphan sweep.
"""
from typing import Any, Dict, Optional
from . import crud
from .cache import SnapshotCache
from .config import Settings
from .db import SessionLocal, session_scope
from .errors import InvalidFilterError, InvalidIntervalError, NotFoundError, QuotaExceededError
from .models import Monitor, User, STATUS_ACTIVE, STATUS_INACTIVE
from .ratelimit import RateLimiter
from .scheduler import JobScheduler
from .schemas import Snapshot
from .utils import get_logger

logger = get_logger(__name__)

_CLEARABLE_FIELDS = ("min_price", "max_price")


def _check_price_range(min_price, max_price) -> None:
    if min_price is not None and max_price is not None and min_price > max_price:
        raise InvalidFilterError(f"min_price {min_price} is above max_price {max_price}")


class MonitorService:
    def __init__(self, scheduler: JobScheduler, cache: SnapshotCache, rate_limiter: RateLimiter,
                 settings: Settings, session_factory=SessionLocal):
        self.scheduler = scheduler
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.session_factory = session_factory

    def _validate_interval(self, interval_ms: int) -> int:
        if interval_ms < self.settings.min_interval_ms:
            raise InvalidIntervalError(
                f"interval {interval_ms}ms is below the minimum of {self.settings.min_interval_ms}ms"
            )
        return interval_ms

    def _load(self, db, monitor_id: int) -> Monitor:
        monitor = crud.get_monitor(db, monitor_id)
        if monitor is None:
            raise NotFoundError("monitor", monitor_id)
        return monitor

    def create_user(self, email: str, max_active_monitors: Optional[int] = None,
                    max_api_calls_per_hour: Optional[int] = None,
                    max_notifications_per_day: Optional[int] = None) -> User:
        s = self.settings
        with session_scope(self.session_factory) as db:
            return crud.create_user(
                db, email,
                max_active_monitors=s.default_max_active_monitors if max_active_monitors is None else max_active_monitors,
                max_api_calls_per_hour=s.default_max_api_calls_per_hour if max_api_calls_per_hour is None else max_api_calls_per_hour,
                max_notifications_per_day=s.default_max_notifications_per_day if max_notifications_per_day is None else max_notifications_per_day,
            )

    def create_monitor(self, user_id: int, data: Dict[str, Any]) -> Monitor:
        _check_price_range(data.get("min_price"), data.get("max_price"))
        self.rate_limiter.check_active_monitor_quota(user_id)
        interval_ms = self._validate_interval(data.get("interval_ms") or self.settings.default_interval_ms)
        with session_scope(self.session_factory) as db:
            monitor = crud.create_monitor(db, user_id, data, interval_ms)
        logger.info("Created monitor %s for user %s (inactive, every %sms)", monitor.id, user_id, interval_ms)
        return monitor

    def get_monitor(self, monitor_id: int) -> Monitor:
        with session_scope(self.session_factory) as db:
            return self._load(db, monitor_id)

    def activate_monitor(self, monitor_id: int) -> Monitor:
        with session_scope(self.session_factory) as db:
            monitor = self._load(db, monitor_id)
            user_id, interval_ms, status = monitor.user_id, monitor.interval_ms, monitor.status
            if status != STATUS_ACTIVE and not crud.activate_within_quota(db, monitor_id, user_id):
                db.expire_all()
                if self._load(db, monitor_id).status != STATUS_ACTIVE:
                    raise QuotaExceededError(f"user {user_id} is at its active monitor limit")
        next_run = self.scheduler.upsert_schedule(monitor_id, interval_ms)
        with session_scope(self.session_factory) as db:
            crud.set_next_check_at(db, monitor_id, next_run)
        logger.info("Activated monitor %s", monitor_id)
        return self.get_monitor(monitor_id)

    def deactivate_monitor(self, monitor_id: int) -> Monitor:
        with session_scope(self.session_factory) as db:
            self._load(db, monitor_id)
            crud.set_status(db, monitor_id, STATUS_INACTIVE, next_check_at=None)
        had_schedule = self.scheduler.remove_schedule(monitor_id)
        self.cache.clear(monitor_id)
        logger.info("Deactivated monitor %s%s", monitor_id, "" if had_schedule else " (was not scheduled)")
        return self.get_monitor(monitor_id)

    def update_interval(self, monitor_id: int, interval_ms: int) -> Monitor:
        self._validate_interval(interval_ms)
        with session_scope(self.session_factory) as db:
            monitor = self._load(db, monitor_id)
            crud.update_monitor(db, monitor_id, {"interval_ms": interval_ms})
            active = monitor.status == STATUS_ACTIVE
        if active:
            next_run = self.scheduler.upsert_schedule(monitor_id, interval_ms)
            with session_scope(self.session_factory) as db:
                crud.set_next_check_at(db, monitor_id, next_run)
        logger.info("Monitor %s interval set to %sms", monitor_id, interval_ms)
        return self.get_monitor(monitor_id)

    def update_filters(self, monitor_id: int, data: Dict[str, Any]) -> Monitor:
        # only the price bounds can be cleared; list fields and keywords keep a value
        updates = {
            k: v for k, v in data.items()
            if k in crud.FILTER_FIELDS and (v is not None or k in _CLEARABLE_FIELDS)
        }
        if "keywords" in updates and not updates["keywords"]:
            raise InvalidFilterError("keywords may not be empty")
        with session_scope(self.session_factory) as db:
            current = self._load(db, monitor_id)
            _check_price_range(updates.get("min_price", current.min_price),
                               updates.get("max_price", current.max_price))
            monitor = crud.update_monitor(db, monitor_id, updates)
        # results for the old query would all read as new
        self.cache.clear(monitor_id)
        logger.info("Monitor %s filters updated: %s", monitor_id, ", ".join(sorted(updates)) or "none")
        return monitor

    def delete_monitor(self, monitor_id: int) -> None:
        with session_scope(self.session_factory) as db:
            if not crud.delete_monitor(db, monitor_id):
                raise NotFoundError("monitor", monitor_id)
        self.scheduler.remove_schedule(monitor_id)
        self.cache.clear(monitor_id)
        logger.info("Deleted monitor %s", monitor_id)

    def get_snapshot(self, monitor_id: int) -> Optional[Snapshot]:
        self.get_monitor(monitor_id)
        return self.cache.load(monitor_id)
