"""Result snapshot cache.

One row per monitor holding the JSON-serialized snapshot of the last
successful poll. Rows expire after a fixed retention window; a missing,
expired or unreadable row reads as "no previous snapshot".
"""
from datetime import timedelta
from typing import Callable, Optional
from pydantic import ValidationError
from sqlalchemy import delete
from .db import SessionLocal, session_scope
from .models import ResultSnapshot
from .schemas import Snapshot
from .utils import get_logger, utcnow

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 24


class SnapshotCache:
    def __init__(self, session_factory=SessionLocal, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Callable = utcnow):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    def store(self, monitor_id: int, snapshot: Snapshot) -> None:
        now = self.clock()
        row = ResultSnapshot(
            monitor_id=monitor_id,
            payload=snapshot.model_dump_json(),
            stored_at=now,
            expires_at=now + self.ttl,
        )
        with session_scope(self.session_factory) as db:
            db.merge(row)

    def load(self, monitor_id: int) -> Optional[Snapshot]:
        with session_scope(self.session_factory) as db:
            row = db.get(ResultSnapshot, monitor_id)
            if row is None or row.expires_at <= self.clock():
                return None
            payload = row.payload
        try:
            return Snapshot.model_validate_json(payload)
        except ValidationError as e:
            logger.warning("Discarding unreadable snapshot for monitor %s: %s", monitor_id, e)
            return None

    def clear(self, monitor_id: int) -> bool:
        with session_scope(self.session_factory) as db:
            res = db.execute(delete(ResultSnapshot).where(ResultSnapshot.monitor_id == monitor_id))
            return res.rowcount > 0

    def purge_expired(self) -> int:
        with session_scope(self.session_factory) as db:
            res = db.execute(delete(ResultSnapshot).where(ResultSnapshot.expires_at <= self.clock()))
            return res.rowcount
