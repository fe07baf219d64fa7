"""Append-only notification history with a fixed retention window.

Rows carry caller-supplied ids and are never updated except for `is_read`.
Users may delete their own rows.
`expires_at` marks when a row becomes eligible for removal; deleting expired
rows is left to the database/reaper.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update

from encore.common.config import settings
from encore.services.notification.models import NotificationHistory


def new_history_entry(
    history_id: str,
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: dict[str, str] | None = None,
    concert_id: str | None = None,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> NotificationHistory:
    """Build an unread history row that expires after the retention window."""

    now = now or datetime.now(timezone.utc)
    days = settings.notify_history_retention_days if retention_days is None else retention_days
    return NotificationHistory(
        id=history_id,
        user_id=user_id,
        concert_id=concert_id,
        type=type,
        title=title,
        message=message,
        data=dict(data or {}),
        is_read=False,
        sent_at=now,
        created_at=now,
        expires_at=now + timedelta(days=days),
    )


def insert_many(db, entries: list[NotificationHistory]) -> None:
    """Add rows with pre-generated ids to the session; caller commits."""

    if not entries:
        return
    for entry in entries:
        if not entry.id:
            raise ValueError("history entries require a caller-supplied id")
    db.add_all(entries)
    db.flush()


def count_unread(db, user_id: str) -> int:
    return db.execute(
        select(func.count())
        .select_from(NotificationHistory)
        .where(NotificationHistory.user_id == user_id, NotificationHistory.is_read.is_(False))
    ).scalar_one()


def count_by_read_status(db, user_id: str) -> dict[str, int]:
    counts = {"read": 0, "unread": 0}
    rows = db.execute(
        select(NotificationHistory.is_read, func.count())
        .where(NotificationHistory.user_id == user_id)
        .group_by(NotificationHistory.is_read)
    ).all()
    for is_read, count in rows:
        counts["read" if is_read else "unread"] = count
    return counts


def get_entry(db, history_id: str) -> NotificationHistory | None:
    return db.get(NotificationHistory, history_id)


def list_for_user(
    db,
    user_id: str,
    is_read: bool | None = None,
    offset: int = 0,
    limit: int | None = None,
) -> list[NotificationHistory]:
    """Newest-first page of a user's history, optionally filtered by read flag."""

    query = select(NotificationHistory).where(NotificationHistory.user_id == user_id)
    if is_read is not None:
        query = query.where(NotificationHistory.is_read.is_(is_read))
    query = query.order_by(NotificationHistory.created_at.desc(), NotificationHistory.id).offset(offset)
    if limit:
        query = query.limit(limit)
    return list(db.execute(query).scalars())


def mark_read(db, history_id: str) -> bool:
    table = NotificationHistory.__table__
    result = db.execute(
        update(table).where(table.c.id == history_id, table.c.is_read.is_(False)).values(is_read=True)
    )
    return result.rowcount == 1


def mark_many_read(db, user_id: str, history_ids: list[str]) -> int:
    """Mark the listed rows read; ids belonging to other users are ignored."""

    if not history_ids:
        return 0
    table = NotificationHistory.__table__
    result = db.execute(
        update(table)
        .where(table.c.user_id == user_id, table.c.id.in_(history_ids), table.c.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount


def mark_all_read(db, user_id: str) -> int:
    table = NotificationHistory.__table__
    result = db.execute(
        update(table).where(table.c.user_id == user_id, table.c.is_read.is_(False)).values(is_read=True)
    )
    return result.rowcount


def delete_entry(db, history_id: str) -> bool:
    result = db.execute(delete(NotificationHistory).where(NotificationHistory.id == history_id))
    return result.rowcount == 1


def delete_for_user(db, user_id: str) -> int:
    result = db.execute(delete(NotificationHistory).where(NotificationHistory.user_id == user_id))
    return result.rowcount
