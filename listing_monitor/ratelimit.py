"""Per-user quotas.

The active-monitor quota is a count over the monitor store. The hourly API
call and daily notification quotas are counter rows in the shared database,
so every service instance sees the same usage. Counters only ever increment
inside a window; a window ends when its row expires.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from .db import SessionLocal, session_scope
from .errors import NotFoundError, QuotaExceededError
from .models import RateLimitCounter
from . import crud
from .utils import get_logger, utcnow

logger = get_logger(__name__)

API_SCOPE = "api"
NOTIFICATION_SCOPE = "notification"


def next_local_midnight(now: datetime) -> datetime:
    """Next midnight in the host's local timezone, as naive UTC."""
    local = now.replace(tzinfo=timezone.utc).astimezone()
    midnight = (local + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def hourly_expiry(now: datetime) -> datetime:
    return now + timedelta(hours=1)


class RateLimiter:
    def __init__(self, session_factory=SessionLocal, clock: Callable = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def check_active_monitor_quota(self, user_id: int) -> None:
        with session_scope(self.session_factory) as db:
            user = crud.get_user(db, user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            active = crud.count_active_monitors(db, user_id)
            limit = user.max_active_monitors
        if active >= limit:
            raise QuotaExceededError(
                f"user {user_id} already has {active} active monitors (max {limit})"
            )

    def check_api_call_quota(self, user_id: int) -> bool:
        return self._consume(user_id, API_SCOPE, "max_api_calls_per_hour", hourly_expiry)

    def check_notification_quota(self, user_id: int) -> bool:
        return self._consume(user_id, NOTIFICATION_SCOPE, "max_notifications_per_day", next_local_midnight)

    def usage(self, user_id: int) -> Dict[str, int]:
        now = self.clock()
        keys = {scope: self._key(scope, user_id) for scope in (API_SCOPE, NOTIFICATION_SCOPE)}
        with session_scope(self.session_factory) as db:
            if crud.get_user(db, user_id) is None:
                raise NotFoundError("user", user_id)
            rows = db.scalars(select(RateLimitCounter).where(RateLimitCounter.key.in_(keys.values())))
            live = {r.key: r.count for r in rows if r.expires_at > now}
        return {scope: live.get(key, 0) for scope, key in keys.items()}

    @staticmethod
    def _key(scope: str, user_id: int) -> str:
        return f"{scope}:{user_id}"

    def _consume(self, user_id: int, scope: str, limit_attr: str, expiry: Callable) -> bool:
        with session_scope(self.session_factory) as db:
            user = crud.get_user(db, user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            cap = getattr(user, limit_attr)
        if cap <= 0:
            return False
        key = self._key(scope, user_id)
        # a concurrent writer can open the window between our statements; go round again
        for _ in range(3):
            now = self.clock()
            with session_scope(self.session_factory) as db:
                res = db.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.key == key,
                           RateLimitCounter.expires_at > now,
                           RateLimitCounter.count < cap)
                    .values(count=RateLimitCounter.count + 1)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount:
                    return True
                row = db.get(RateLimitCounter, key)
                if row is not None and row.expires_at > now:
                    logger.info("%s quota exhausted for user %s (%s/%s)", scope, user_id, row.count, cap)
                    return False
                if row is not None:
                    res = db.execute(
                        update(RateLimitCounter)
                        .where(RateLimitCounter.key == key, RateLimitCounter.expires_at <= now)
                        .values(count=1, expires_at=expiry(now))
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount:
                        return True
                    continue
            try:
                with session_scope(self.session_factory) as db:
                    db.add(RateLimitCounter(key=key, count=1, expires_at=expiry(now)))
                return True
            except IntegrityError:
                continue
        return False
