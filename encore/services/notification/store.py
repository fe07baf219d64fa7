"""Scheduled notification state store.

Every status change is a single conditional UPDATE guarded on
`status = 'PENDING'`, so the helpers are safe to call redundantly from any
number of worker processes without in-process locking.
"""

from datetime import datetime, timezone

from sqlalchemy import func, select, update

from encore.common.state_machine import CANCELLED, FAILED, PENDING, SENT, validate_transition
from encore.services.notification.models import ScheduledNotification


def get_notification(db, notification_id: str) -> ScheduledNotification | None:
    return db.get(ScheduledNotification, notification_id)


def create_notification(
    db,
    user_id: str,
    title: str,
    message: str,
    scheduled_at: datetime,
    data: dict[str, str] | None = None,
    concert_id: str | None = None,
) -> ScheduledNotification:
    """Add a PENDING notification to the session; caller commits."""

    notification = ScheduledNotification(
        user_id=user_id,
        concert_id=concert_id,
        title=title,
        message=message,
        data=dict(data or {}),
        scheduled_at=scheduled_at,
        status=PENDING,
    )
    db.add(notification)
    db.flush()
    db.refresh(notification)
    return notification


def _transition_from_pending(db, notification_id: str, new_status: str, **values) -> bool:
    validate_transition(PENDING, new_status)
    table = ScheduledNotification.__table__
    result = db.execute(
        update(table)
        .where(table.c.id == notification_id, table.c.status == PENDING)
        .values(status=new_status, updated_at=datetime.now(timezone.utc), **values)
    )
    return result.rowcount == 1


def mark_sent(db, notification_id: str) -> bool:
    """PENDING -> SENT; False when another writer already moved the row."""

    return _transition_from_pending(db, notification_id, SENT, sent_at=datetime.now(timezone.utc))


def mark_failed(db, notification_id: str, reason: str) -> bool:
    """PENDING -> FAILED with an operator-facing reason."""

    return _transition_from_pending(db, notification_id, FAILED, error_reason=reason)


def mark_cancelled(db, notification_id: str) -> bool:
    return _transition_from_pending(db, notification_id, CANCELLED)


def find_future_pending(db, now: datetime) -> list[ScheduledNotification]:
    """Pending notifications whose send time has not arrived yet."""

    return list(
        db.execute(
            select(ScheduledNotification)
            .where(ScheduledNotification.status == PENDING, ScheduledNotification.scheduled_at >= now)
            .order_by(ScheduledNotification.scheduled_at)
        ).scalars()
    )


def find_stale_pending(db, cutoff: datetime) -> list[ScheduledNotification]:
    """Pending notifications that should have been sent before `cutoff`."""

    return list(
        db.execute(
            select(ScheduledNotification)
            .where(ScheduledNotification.status == PENDING, ScheduledNotification.scheduled_at < cutoff)
            .order_by(ScheduledNotification.scheduled_at)
        ).scalars()
    )


def count_by_status(db, user_id: str | None = None) -> dict[str, int]:
    query = select(ScheduledNotification.status, func.count()).group_by(ScheduledNotification.status)
    if user_id is not None:
        query = query.where(ScheduledNotification.user_id == user_id)
    return {status: count for status, count in db.execute(query).all()}


def list_for_user(db, user_id: str, status: str | None = None) -> list[ScheduledNotification]:
    """A user's notifications, soonest send time first."""

    query = select(ScheduledNotification).where(ScheduledNotification.user_id == user_id)
    if status is not None:
        query = query.where(ScheduledNotification.status == status)
    return list(db.execute(query.order_by(ScheduledNotification.scheduled_at)).scalars())
