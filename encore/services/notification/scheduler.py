"""Producer side: persist a PENDING notification, then enqueue its job."""

from datetime import datetime, timezone

from encore.common.config import settings
from encore.common.db import as_utc
from encore.common.logging import logger
from encore.common.metrics import notifications_scheduled_total
from encore.common.state_machine import ALL_STATUSES
from encore.services.notification import store
from encore.services.notification.models import ScheduledNotification
from encore.services.notification.queue import NotificationQueue


class NotificationScheduler:
    """Creates, cancels and reports on scheduled notifications."""

    def __init__(self, session_factory, queue: NotificationQueue, service_name: str | None = None) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.service_name = service_name or settings.service_name

    async def schedule(
        self,
        user_id: str,
        title: str,
        message: str,
        scheduled_at: datetime,
        data: dict[str, str] | None = None,
        concert_id: str | None = None,
    ) -> ScheduledNotification:
        """Store the row before enqueueing so the worker can always find it."""

        scheduled_at = as_utc(scheduled_at)
        if scheduled_at <= datetime.now(timezone.utc):
            raise ValueError("scheduled_at must be in the future")

        with self.session_factory() as db:
            notification = store.create_notification(
                db,
                user_id=user_id,
                title=title,
                message=message,
                scheduled_at=scheduled_at,
                data=data,
                concert_id=concert_id,
            )
            db.commit()

        queued = await self.queue.enqueue(notification.id, defer_until=scheduled_at)
        notifications_scheduled_total.labels(service=self.service_name).inc()
        logger.info(
            "notification_scheduled notification_id=%s user_id=%s scheduled_at=%s queued=%s",
            notification.id,
            user_id,
            scheduled_at.isoformat(),
            queued,
        )
        return notification

    async def cancel(self, notification_id: str) -> bool:
        """PENDING -> CANCELLED, then drop the queued job.

        The row is the source of truth: if the job cannot be removed, the
        worker's status guard still skips it.
        """

        with self.session_factory() as db:
            cancelled = store.mark_cancelled(db, notification_id)
            db.commit()
        if not cancelled:
            return False
        try:
            removed = await self.queue.remove(notification_id)
        except Exception as exc:
            logger.warning("job_remove_failed notification_id=%s error=%s", notification_id, exc)
            removed = False
        logger.info("notification_cancelled notification_id=%s job_removed=%s", notification_id, removed)
        return True

    def list_for_user(self, user_id: str, status: str | None = None) -> list[ScheduledNotification]:
        with self.session_factory() as db:
            return store.list_for_user(db, user_id, status=status)

    def stats(self, user_id: str | None = None) -> dict[str, int]:
        """Per-status counts with every status present, plus a total."""

        with self.session_factory() as db:
            counts = store.count_by_status(db, user_id=user_id)
        stats = {status.lower(): counts.get(status, 0) for status in ALL_STATUSES}
        stats["total"] = sum(counts.values())
        return stats
