"""Wiring of the engine components and the entry point fired jobs call into."""
from typing import Optional
from .cache import SnapshotCache
from .config import Settings
from .db import SessionLocal
from .jobs import from_kwargs
from .marketplace import EbayClient, MarketplaceClient
from .notifier import LoggingNotifier, Notifier
from .ratelimit import RateLimiter
from .reconciler import MaintenanceReconciler
from .scheduler import JobScheduler
from .services import MonitorService
from .throttle import TokenBucket
from .utils import get_logger
from .worker import PollWorker

logger = get_logger(__name__)

_current: Optional["Runtime"] = None


class Runtime:
    def __init__(self, settings: Settings, session_factory=SessionLocal, scheduler: JobScheduler = None,
                 marketplace: MarketplaceClient = None, notifier: Notifier = None, engine=None):
        self.settings = settings
        self.scheduler = scheduler or JobScheduler.create(settings, engine=engine)
        self.cache = SnapshotCache(session_factory, ttl_seconds=settings.snapshot_ttl_seconds)
        self.rate_limiter = RateLimiter(session_factory)
        self.throttle = TokenBucket(settings.worker_max_jobs_per_second)
        self.reconciler = MaintenanceReconciler(
            self.scheduler, self.cache, session_factory, inactive_days=settings.inactive_user_days
        )
        self.worker = PollWorker(
            self.scheduler, self.cache,
            marketplace or EbayClient(settings),
            notifier or LoggingNotifier(),
            self.rate_limiter, self.throttle,
            reconciler=self.reconciler,
            session_factory=session_factory,
            max_attempts=settings.job_attempts,
            backoff_ms=settings.job_backoff_ms,
        )
        self.service = MonitorService(self.scheduler, self.cache, self.rate_limiter, settings, session_factory)

    def start(self, paused: bool = False) -> None:
        install(self)
        self.scheduler.start(paused=paused)
        self.scheduler.schedule_maintenance(
            self.settings.inactive_sweep_interval_ms, self.settings.orphan_sweep_interval_ms
        )

    def shutdown(self, wait: bool = True) -> None:
        self.scheduler.shutdown(wait=wait)
        install(None)


def install(runtime: Optional[Runtime]) -> None:
    global _current
    _current = runtime


def current() -> Optional[Runtime]:
    return _current


def dispatch(kind: str, **data):
    """Called by APScheduler for every fired schedule entry."""
    runtime = _current
    if runtime is None:
        raise RuntimeError(f"no runtime installed to run {kind!r} job")
    return runtime.worker.handle(from_kwargs(kind, **data))
