"""Startup recovery of jobs missing from the queue."""

import asyncio
from datetime import datetime, timedelta, timezone

from encore.services.notification import store
from encore.services.notification.recovery import REASON_JOB_LOST, NotificationRecovery

from tests.fakes import FakeQueue


def test_recover_lost_future_jobs(session_factory, add_notification):
    now = datetime.now(timezone.utc)
    add_notification("lost", scheduled_at=now + timedelta(hours=1))
    add_notification("queued", scheduled_at=now + timedelta(hours=2))
    add_notification("cancelled", status="CANCELLED", scheduled_at=now + timedelta(hours=1))
    queue = FakeQueue(existing=["queued"])

    counts = asyncio.run(NotificationRecovery(session_factory, queue).recover_lost_jobs())

    assert counts == {"recovered": 1, "existing": 1, "errors": 0}
    assert [job_id for job_id, _ in queue.enqueued] == ["lost"]
    assert queue.enqueued[0][1] is not None


def test_cleanup_stale_jobs(session_factory, add_notification):
    now = datetime.now(timezone.utc)
    add_notification("late", scheduled_at=now - timedelta(hours=1))
    add_notification("ancient", scheduled_at=now - timedelta(days=2))
    add_notification("grace", scheduled_at=now - timedelta(minutes=1))
    add_notification("stuck", scheduled_at=now - timedelta(hours=3))
    queue = FakeQueue(existing=["stuck"])

    counts = asyncio.run(NotificationRecovery(session_factory, queue).cleanup_stale_jobs())

    assert counts == {"readded": 1, "failed": 1, "existing": 1, "errors": 0}
    assert queue.enqueued == [("late", None)]
    with session_factory() as db:
        ancient = store.get_notification(db, "ancient")
        assert ancient.status == "FAILED"
        assert ancient.error_reason == REASON_JOB_LOST
        assert store.get_notification(db, "grace").status == "PENDING"


def test_full_recovery_survives_queue_errors(session_factory, add_notification):
    add_notification("lost", scheduled_at=datetime.now(timezone.utc) + timedelta(hours=1))

    class BrokenQueue(FakeQueue):
        async def job_exists(self, notification_id):
            raise ConnectionError("redis down")

    result = asyncio.run(NotificationRecovery(session_factory, BrokenQueue()).run_full_recovery())

    assert result["future"]["errors"] == 1
    assert result["stale"]["errors"] == 0


def test_finished_job_with_pending_row_is_requeued(session_factory, add_notification):
    now = datetime.now(timezone.utc)
    add_notification("future", scheduled_at=now + timedelta(hours=1))
    add_notification("late", scheduled_at=now - timedelta(hours=1))
    queue = FakeQueue(finished=["future", "late"])
    recovery = NotificationRecovery(session_factory, queue)

    future = asyncio.run(recovery.recover_lost_jobs())
    stale = asyncio.run(recovery.cleanup_stale_jobs())

    assert future == {"recovered": 1, "existing": 0, "errors": 0}
    assert stale == {"readded": 1, "failed": 0, "existing": 0, "errors": 0}
    assert queue.requeued == ["future", "late"]
    assert set(queue.jobs) == {"future", "late"}
    assert queue.finished == set()


def test_recovered_defer_time_is_utc(session_factory, add_notification):
    local = timezone(timedelta(hours=9))
    when = (datetime.now(timezone.utc) + timedelta(hours=1)).astimezone(local)
    add_notification("lost", scheduled_at=when)
    queue = FakeQueue()

    asyncio.run(NotificationRecovery(session_factory, queue).recover_lost_jobs())

    defer_until = queue.enqueued[0][1]
    assert defer_until.utcoffset() == timedelta(0)
    assert defer_until == when
