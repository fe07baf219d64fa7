"""Rebuild queue jobs lost to a Redis outage or restart.

The database is the source of truth: any PENDING notification without a waiting or
running job is either re-enqueued or, if far too late, marked FAILED. A job
that already finished while its row stayed PENDING counts as lost.
"""

from datetime import datetime, timedelta, timezone

from encore.common.config import settings
from encore.common.logging import logger
from encore.common.metrics import jobs_recovered_total
from encore.services.notification import store
from encore.services.notification.queue import NotificationQueue

REASON_JOB_LOST = "Job lost and too old to recover (>24h)"


class NotificationRecovery:
    def __init__(
        self,
        session_factory,
        queue: NotificationQueue,
        grace_seconds: int | None = None,
        max_age_seconds: int | None = None,
        service_name: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.grace = timedelta(
            seconds=settings.notify_stale_grace_seconds if grace_seconds is None else grace_seconds
        )
        self.max_age = timedelta(
            seconds=settings.notify_stale_max_age_seconds if max_age_seconds is None else max_age_seconds
        )
        self.service_name = service_name or settings.service_name

    async def recover_lost_jobs(self) -> dict[str, int]:
        """Re-enqueue future PENDING notifications whose job vanished."""

        counts = {"recovered": 0, "existing": 0, "errors": 0}
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            pending = store.find_future_pending(db, now)
        for notification in pending:
            try:
                if await self.queue.job_exists(notification.id):
                    counts["existing"] += 1
                    continue
                await self.queue.requeue(notification.id, defer_until=notification.scheduled_at)
                counts["recovered"] += 1
                jobs_recovered_total.labels(service=self.service_name, kind="future").inc()
            except Exception as exc:
                counts["errors"] += 1
                logger.error("job_recovery_failed notification_id=%s error=%s", notification.id, exc)
        logger.info(
            "job_recovery_complete recovered=%s existing=%s errors=%s",
            counts["recovered"],
            counts["existing"],
            counts["errors"],
        )
        return counts

    async def cleanup_stale_jobs(self) -> dict[str, int]:
        """Handle PENDING notifications past their send time by more than the grace period."""

        counts = {"readded": 0, "failed": 0, "existing": 0, "errors": 0}
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            stale = store.find_stale_pending(db, now - self.grace)
        for notification in stale:
            try:
                if await self.queue.job_exists(notification.id):
                    counts["existing"] += 1
                    continue
                if now - notification.scheduled_at > self.max_age:
                    with self.session_factory() as db:
                        store.mark_failed(db, notification.id, REASON_JOB_LOST)
                        db.commit()
                    counts["failed"] += 1
                    logger.warning("stale_notification_failed notification_id=%s", notification.id)
                else:
                    await self.queue.requeue(notification.id)
                    counts["readded"] += 1
                    jobs_recovered_total.labels(service=self.service_name, kind="stale").inc()
            except Exception as exc:
                counts["errors"] += 1
                logger.error("stale_cleanup_failed notification_id=%s error=%s", notification.id, exc)
        logger.info(
            "stale_cleanup_complete readded=%s failed=%s existing=%s errors=%s",
            counts["readded"],
            counts["failed"],
            counts["existing"],
            counts["errors"],
        )
        return counts

    async def run_full_recovery(self) -> dict[str, dict[str, int]]:
        """Startup entrypoint; logs instead of raising so the service still boots."""

        result: dict[str, dict[str, int]] = {}
        try:
            result["future"] = await self.recover_lost_jobs()
            result["stale"] = await self.cleanup_stale_jobs()
        except Exception as exc:
            logger.error("notification_recovery_failed error=%s", exc)
        return result
