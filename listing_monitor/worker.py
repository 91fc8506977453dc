"""Poll worker.

Runs the jobs fired by the scheduler. A poll loads the monitor, fetches a
fresh result set, replaces the cached snapshot, reports listings that were
not in the previous snapshot and records bookkeeping on the monitor row.
Poll errors stay inside the job: they are retried with exponential backoff
through the scheduler and logged once the attempts run out.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from . import crud
from .cache import SnapshotCache
from .db import SessionLocal, session_scope
from .detector import detect_new_items
from .errors import NotFoundError
from .jobs import Job, PollMonitor, DisableInactiveMonitors, CleanupOrphanedSchedules
from .marketplace import MarketplaceClient, filter_excluded
from .models import STATUS_ACTIVE
from .notifier import Notifier
from .ratelimit import RateLimiter
from .scheduler import JobScheduler
from .schemas import Item, Snapshot
from .throttle import TokenBucket
from .utils import get_logger, utcnow

logger = get_logger(__name__)

SKIPPED_INACTIVE = "skipped-inactive"
SKIPPED_QUOTA = "skipped-quota"
DEACTIVATED = "deactivated-mid-poll"
BASELINE = "baseline"
POLLED = "polled"


@dataclass
class PollOutcome:
    status: str
    result_count: int = 0
    new_items: List[Item] = field(default_factory=list)
    notified: bool = False


class PollWorker:
    def __init__(self, scheduler: JobScheduler, cache: SnapshotCache, marketplace: MarketplaceClient,
                 notifier: Notifier, rate_limiter: RateLimiter, throttle: TokenBucket,
                 reconciler=None, session_factory=SessionLocal, max_attempts: int = 3,
                 backoff_ms: int = 1000, clock: Callable = utcnow):
        self.scheduler = scheduler
        self.cache = cache
        self.marketplace = marketplace
        self.notifier = notifier
        self.rate_limiter = rate_limiter
        self.throttle = throttle
        self.reconciler = reconciler
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.clock = clock

    def handle(self, job: Job):
        if isinstance(job, PollMonitor):
            return self.run_poll(job)
        if isinstance(job, DisableInactiveMonitors):
            return self.reconciler.disable_inactive_monitors()
        if isinstance(job, CleanupOrphanedSchedules):
            return self.reconciler.cleanup_orphaned_schedules()
        raise TypeError(f"unhandled job type: {type(job).__name__}")

    def run_poll(self, job: PollMonitor) -> Optional[PollOutcome]:
        self.throttle.acquire()
        try:
            return self.poll(job.monitor_id)
        except NotFoundError as e:
            logger.error("Poll of monitor %s failed permanently: %s", job.monitor_id, e)
        except Exception:
            logger.exception("Poll of monitor %s failed (attempt %d/%d)",
                             job.monitor_id, job.attempt, self.max_attempts)
            self._retry_later(job)
        return None

    def _retry_later(self, job: PollMonitor) -> None:
        if job.attempt >= self.max_attempts:
            logger.error("Giving up on monitor %s after %d attempts; next run keeps its normal schedule",
                         job.monitor_id, job.attempt)
            return
        delay_ms = self.backoff_ms * 2 ** (job.attempt - 1)
        try:
            queued = self.scheduler.schedule_retry(job.monitor_id, job.attempt + 1, delay_ms)
        except Exception:
            logger.exception("Could not queue retry for monitor %s", job.monitor_id)
            return
        if queued:
            logger.info("Retrying monitor %s in %sms (attempt %d)", job.monitor_id, delay_ms, job.attempt + 1)

    def _is_active(self, monitor_id: int) -> bool:
        with session_scope(self.session_factory) as db:
            monitor = crud.get_monitor(db, monitor_id)
            return monitor is not None and monitor.status == STATUS_ACTIVE

    def poll(self, monitor_id: int) -> PollOutcome:
        with session_scope(self.session_factory) as db:
            monitor = crud.get_monitor(db, monitor_id)
            if monitor is None:
                raise NotFoundError("monitor", monitor_id)
            if monitor.status != STATUS_ACTIVE:
                logger.info("Monitor %s is %s, skipping poll", monitor_id, monitor.status)
                return PollOutcome(SKIPPED_INACTIVE)
            user_id = monitor.user_id
            query = dict(
                keywords=list(monitor.keywords or []),
                excluded_keywords=list(monitor.excluded_keywords or []),
                min_price=float(monitor.min_price) if monitor.min_price is not None else None,
                max_price=float(monitor.max_price) if monitor.max_price is not None else None,
                conditions=list(monitor.conditions or []),
                sellers=list(monitor.sellers or []),
            )

        if not self.rate_limiter.check_api_call_quota(user_id):
            logger.info("Hourly API quota of user %s exhausted, skipping monitor %s", user_id, monitor_id)
            return PollOutcome(SKIPPED_QUOTA)

        previous = self.cache.load(monitor_id)
        result = self.marketplace.search(**query)
        items = filter_excluded(result.items, query["excluded_keywords"])
        now = self.clock()
        snapshot = Snapshot(items=items, total=result.total, timestamp=now)
        self.cache.store(monitor_id, snapshot)

        if not self._is_active(monitor_id):
            # deactivated while we were fetching; don't leave a snapshot behind
            self.cache.clear(monitor_id)
            logger.info("Monitor %s was deactivated during its poll, discarding results", monitor_id)
            return PollOutcome(DEACTIVATED, result_count=len(items))

        outcome = PollOutcome(POLLED if previous is not None else BASELINE, result_count=len(items))
        if previous is not None:
            outcome.new_items = detect_new_items(previous, snapshot)
            if outcome.new_items:
                outcome.notified = self._notify(user_id, monitor_id, outcome.new_items)

        with session_scope(self.session_factory) as db:
            crud.record_poll(db, monitor_id, now, len(items), self.scheduler.get_next_run(monitor_id))
        logger.info("Polled monitor %s: %d items, %d new", monitor_id, len(items), len(outcome.new_items))
        return outcome

    def _notify(self, user_id: int, monitor_id: int, new_items: List[Item]) -> bool:
        if not self.rate_limiter.check_notification_quota(user_id):
            logger.info("Daily notification quota of user %s exhausted, %d item(s) of monitor %s not sent",
                        user_id, len(new_items), monitor_id)
            return False
        try:
            self.notifier.notify(user_id, monitor_id, new_items)
        except Exception:
            logger.exception("Notification for monitor %s failed", monitor_id)
            return False
        with session_scope(self.session_factory) as db:
            crud.increment_notification_count(db, monitor_id)
        return True
