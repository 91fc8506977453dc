"""Shared fixtures: in-memory database, paused scheduler, fakes for the collaborators."""
from datetime import datetime, timezone

import pytest
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from listing_monitor import models  # noqa: F401 register tables
from listing_monitor.cache import SnapshotCache
from listing_monitor.config import Settings
from listing_monitor.db import Base
from listing_monitor.ratelimit import RateLimiter
from listing_monitor.reconciler import MaintenanceReconciler
from listing_monitor.scheduler import JobScheduler
from listing_monitor.services import MonitorService
from listing_monitor.throttle import TokenBucket
from listing_monitor.worker import PollWorker

from fakes import FakeClock, FakeMarketplace, RecordingNotifier


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", min_interval_ms=60_000, default_interval_ms=1_800_000,
                    job_attempts=3, job_backoff_ms=1000)


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 12, 0, 0))


@pytest.fixture
def scheduler():
    js = JobScheduler(BackgroundScheduler(jobstores={"default": MemoryJobStore()}, timezone=timezone.utc))
    js.start(paused=True)
    yield js
    js.shutdown(wait=False)


@pytest.fixture
def cache(session_factory, clock):
    return SnapshotCache(session_factory, clock=clock)


@pytest.fixture
def rate_limiter(session_factory, clock):
    return RateLimiter(session_factory, clock=clock)


@pytest.fixture
def marketplace():
    return FakeMarketplace()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def reconciler(scheduler, cache, session_factory, clock):
    return MaintenanceReconciler(scheduler, cache, session_factory, inactive_days=3, clock=clock)


@pytest.fixture
def worker(scheduler, cache, marketplace, notifier, rate_limiter, reconciler, session_factory, clock):
    return PollWorker(scheduler, cache, marketplace, notifier, rate_limiter,
                      TokenBucket(rate=1000), reconciler=reconciler,
                      session_factory=session_factory, clock=clock)


@pytest.fixture
def service(scheduler, cache, rate_limiter, settings, session_factory):
    return MonitorService(scheduler, cache, rate_limiter, settings, session_factory)


@pytest.fixture
def user(service, clock):
    return service.create_user("owner@example.com", max_active_monitors=3,
                               max_api_calls_per_hour=100, max_notifications_per_day=10)
