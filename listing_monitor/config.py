"""Runtime settings read from the environment (a `.env` file is honoured)."""
import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def database_url() -> str:
    url = os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL") or "sqlite:///./listing_monitor.db"
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./listing_monitor.db"
    worker_concurrency: int = 5
    worker_max_jobs_per_second: int = 10
    job_attempts: int = 3
    job_backoff_ms: int = 1000
    default_interval_ms: int = 1_800_000
    min_interval_ms: int = 60_000
    snapshot_ttl_seconds: int = 24 * 60 * 60
    inactive_user_days: int = 3
    inactive_sweep_interval_ms: int = 24 * 60 * 60 * 1000
    orphan_sweep_interval_ms: int = 12 * 60 * 60 * 1000
    default_max_active_monitors: int = 5
    default_max_api_calls_per_hour: int = 100
    default_max_notifications_per_day: int = 50
    ebay_env: str = "SANDBOX"
    ebay_client_id: str | None = None
    ebay_client_secret: str | None = None
    ebay_search_limit: int = 15
    ebay_timeout_seconds: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=database_url(),
            worker_concurrency=_int("WORKER_CONCURRENCY", 5),
            worker_max_jobs_per_second=_int("WORKER_MAX_JOBS_PER_SECOND", 10),
            job_attempts=_int("JOB_ATTEMPTS", 3),
            job_backoff_ms=_int("JOB_BACKOFF_MS", 1000),
            default_interval_ms=_int("DEFAULT_INTERVAL_MS", 1_800_000),
            min_interval_ms=_int("MIN_INTERVAL_MS", 60_000),
            snapshot_ttl_seconds=_int("SNAPSHOT_TTL_SECONDS", 24 * 60 * 60),
            inactive_user_days=_int("INACTIVE_USER_DAYS", 3),
            inactive_sweep_interval_ms=_int("INACTIVE_SWEEP_INTERVAL_MS", 24 * 60 * 60 * 1000),
            orphan_sweep_interval_ms=_int("ORPHAN_SWEEP_INTERVAL_MS", 12 * 60 * 60 * 1000),
            default_max_active_monitors=_int("DEFAULT_MAX_ACTIVE_MONITORS", 5),
            default_max_api_calls_per_hour=_int("DEFAULT_MAX_API_CALLS_PER_HOUR", 100),
            default_max_notifications_per_day=_int("DEFAULT_MAX_NOTIFICATIONS_PER_DAY", 50),
            ebay_env=os.getenv("EBAY_ENV", "SANDBOX").upper(),
            ebay_client_id=os.getenv("EBAY_CLIENT_ID"),
            ebay_client_secret=os.getenv("EBAY_CLIENT_SECRET"),
            ebay_search_limit=_int("EBAY_SEARCH_LIMIT", 15),
            ebay_timeout_seconds=_int("EBAY_TIMEOUT_SECONDS", 30),
        )
