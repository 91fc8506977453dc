"""SQLAlchemy ORM models for persisted entities.

Users and their monitors are the source of truth; `result_snapshots` and
`rate_limit_counters` are expiring rows used by the cache and the quotas.
"""
from sqlalchemy import Column, Integer, Text, Numeric, DateTime, ForeignKey, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base
from .utils import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(Text, nullable=False, unique=True)
    last_login_at = Column(DateTime)
    max_active_monitors = Column(Integer, nullable=False)
    max_api_calls_per_hour = Column(Integer, nullable=False)
    max_notifications_per_day = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

class Monitor(Base):
    __tablename__ = "monitors"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    keywords = Column(JSONType, nullable=False, default=list)
    excluded_keywords = Column(JSONType, nullable=False, default=list)
    min_price = Column(Numeric)
    max_price = Column(Numeric)
    conditions = Column(JSONType, nullable=False, default=list)
    sellers = Column(JSONType, nullable=False, default=list)
    status = Column(Text, nullable=False, default=STATUS_INACTIVE)
    interval_ms = Column(Integer, nullable=False)
    next_check_at = Column(DateTime)
    last_check_time = Column(DateTime)
    last_result_count = Column(Integer, nullable=False, default=0)
    api_call_count = Column(Integer, nullable=False, default=0)
    notification_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

class ResultSnapshot(Base):
    __tablename__ = "result_snapshots"
    monitor_id = Column(Integer, primary_key=True)
    payload = Column(Text, nullable=False)
    stored_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

class RateLimitCounter(Base):
    __tablename__ = "rate_limit_counters"
    key = Column(Text, primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)

Index("idx_monitors_status", Monitor.status)
Index("idx_result_snapshots_expires_at", ResultSnapshot.expires_at)
