"""Durable monitor store.

Create, read, update and delete helpers for users and monitors, the atomic
bookkeeping increments used by the poll worker, and the two queries the
maintenance sweeps rely on.
"""
from datetime import datetime
from sqlalchemy import DateTime, select, update, func, or_, and_, case, literal
from sqlalchemy.orm import Session, aliased
from typing import Any, Dict, List, Optional
from .models import User, Monitor, STATUS_ACTIVE, STATUS_INACTIVE
from .utils import utcnow

FILTER_FIELDS = ("keywords", "excluded_keywords", "min_price", "max_price", "conditions", "sellers")

def create_user(db: Session, email: str, max_active_monitors: int, max_api_calls_per_hour: int,
                max_notifications_per_day: int, last_login_at: Optional[datetime] = None) -> User:
    user = User(
        email=email,
        max_active_monitors=max_active_monitors,
        max_api_calls_per_hour=max_api_calls_per_hour,
        max_notifications_per_day=max_notifications_per_day,
        last_login_at=last_login_at,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)

def touch_login(db: Session, user_id: int, when: Optional[datetime] = None) -> bool:
    res = db.execute(update(User).where(User.id == user_id).values(last_login_at=when or utcnow()))
    db.commit()
    return res.rowcount > 0

def create_monitor(db: Session, user_id: int, data: Dict[str, Any], interval_ms: int) -> Monitor:
    monitor = Monitor(
        user_id=user_id,
        keywords=list(data.get("keywords") or []),
        excluded_keywords=list(data.get("excluded_keywords") or []),
        min_price=data.get("min_price"),
        max_price=data.get("max_price"),
        conditions=list(data.get("conditions") or []),
        sellers=list(data.get("sellers") or []),
        status=STATUS_INACTIVE,
        interval_ms=interval_ms,
    )
    db.add(monitor)
    db.commit()
    db.refresh(monitor)
    return monitor

def get_monitor(db: Session, monitor_id: int) -> Optional[Monitor]:
    return db.get(Monitor, monitor_id)

def list_monitors(db: Session, user_id: Optional[int] = None, status: Optional[str] = None) -> List[Monitor]:
    q = select(Monitor).order_by(Monitor.id)
    if user_id is not None:
        q = q.where(Monitor.user_id == user_id)
    if status is not None:
        q = q.where(Monitor.status == status)
    return list(db.scalars(q))

def count_active_monitors(db: Session, user_id: int) -> int:
    q = select(func.count()).select_from(Monitor).where(
        Monitor.user_id == user_id, Monitor.status == STATUS_ACTIVE
    )
    return db.scalar(q) or 0

def update_monitor(db: Session, monitor_id: int, updates: Dict[str, Any]) -> Optional[Monitor]:
    obj = db.get(Monitor, monitor_id)
    if not obj:
        return None
    for k, v in updates.items():
        setattr(obj, k, v)
    db.commit()
    db.refresh(obj)
    return obj

def set_status(db: Session, monitor_id: int, status: str, next_check_at: Optional[datetime] = None) -> bool:
    res = db.execute(
        update(Monitor).where(Monitor.id == monitor_id)
        .values(status=status, next_check_at=next_check_at, updated_at=utcnow())
    )
    db.commit()
    return res.rowcount > 0

def set_next_check_at(db: Session, monitor_id: int, when: Optional[datetime]) -> bool:
    """Record the next run of an active monitor; inactive monitors are left alone."""
    res = db.execute(
        update(Monitor).where(Monitor.id == monitor_id, Monitor.status == STATUS_ACTIVE)
        .values(next_check_at=when)
    )
    db.commit()
    return res.rowcount > 0

def activate_within_quota(db: Session, monitor_id: int, user_id: int) -> bool:
    """Flip a monitor to active only while its owner is below `max_active_monitors`.

    Returns False when the monitor is already active or the owner is at the limit.
    """
    # row lock on the owner serializes activations for that owner (ignored by SQLite)
    db.execute(select(User.id).where(User.id == user_id).with_for_update())
    other = aliased(Monitor)
    active = (
        select(func.count()).select_from(other)
        .where(other.user_id == user_id, other.status == STATUS_ACTIVE)
        .scalar_subquery()
    )
    cap = select(User.max_active_monitors).where(User.id == user_id).scalar_subquery()
    res = db.execute(
        update(Monitor)
        .where(Monitor.id == monitor_id, Monitor.status != STATUS_ACTIVE, active < cap)
        .values(status=STATUS_ACTIVE, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount > 0

def delete_monitor(db: Session, monitor_id: int) -> bool:
    obj = db.get(Monitor, monitor_id)
    if not obj:
        return False
    db.delete(obj)
    db.commit()
    return True

def record_poll(db: Session, monitor_id: int, checked_at: datetime, result_count: int,
                next_check_at: Optional[datetime] = None) -> None:
    # api_call_count is incremented in SQL so concurrent polls never lose an update
    db.execute(
        update(Monitor).where(Monitor.id == monitor_id).values(
            last_check_time=checked_at,
            last_result_count=result_count,
            api_call_count=Monitor.api_call_count + 1,
            # a monitor deactivated mid-poll keeps its cleared next_check_at
            next_check_at=case(
                (Monitor.status == STATUS_ACTIVE, literal(next_check_at, DateTime())),
                else_=Monitor.next_check_at,
            ),
        )
    )
    db.commit()

def increment_notification_count(db: Session, monitor_id: int) -> None:
    db.execute(
        update(Monitor).where(Monitor.id == monitor_id)
        .values(notification_count=Monitor.notification_count + 1)
    )
    db.commit()

def active_monitors_of_inactive_users(db: Session, cutoff: datetime) -> List[Monitor]:
    """Active monitors whose owner has not logged in since `cutoff`.

    Owners who never logged in are judged by their account creation date.
    """
    stale = or_(
        User.last_login_at < cutoff,
        and_(User.last_login_at.is_(None), User.created_at < cutoff),
    )
    q = (
        select(Monitor)
        .join(User, User.id == Monitor.user_id)
        .where(Monitor.status == STATUS_ACTIVE, stale)
        .order_by(Monitor.id)
    )
    return list(db.scalars(q))

def active_monitor_ids(db: Session) -> set:
    return set(db.scalars(select(Monitor.id).where(Monitor.status == STATUS_ACTIVE)))
