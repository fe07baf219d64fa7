"""Producer: PENDING row is stored before its job is queued."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from encore.services.notification import store
from encore.services.notification.scheduler import NotificationScheduler

from tests.fakes import FakeQueue


def test_schedule_persists_then_enqueues(session_factory, fake_queue):
    scheduler = NotificationScheduler(session_factory, fake_queue)
    when = datetime.now(timezone.utc) + timedelta(hours=2)

    notification = asyncio.run(
        scheduler.schedule("U1", "Doors open", "See you soon", when, data={"seat": "A1"}, concert_id="C1")
    )

    assert fake_queue.enqueued == [(notification.id, when)]
    with session_factory() as db:
        stored = store.get_notification(db, notification.id)
        assert stored.status == "PENDING"
        assert stored.data == {"seat": "A1"}
        assert stored.concert_id == "C1"


def test_schedule_treats_naive_time_as_utc(session_factory, fake_queue):
    scheduler = NotificationScheduler(session_factory, fake_queue)
    naive = (datetime.now(timezone.utc) + timedelta(hours=1)).replace(tzinfo=None)

    asyncio.run(scheduler.schedule("U1", "T", "M", naive))

    assert fake_queue.enqueued[0][1] == naive.replace(tzinfo=timezone.utc)


def test_schedule_rejects_past_time(session_factory, fake_queue):
    scheduler = NotificationScheduler(session_factory, fake_queue)

    with pytest.raises(ValueError):
        asyncio.run(scheduler.schedule("U1", "T", "M", datetime.now(timezone.utc) - timedelta(minutes=1)))

    assert fake_queue.enqueued == []
    with session_factory() as db:
        assert store.count_by_status(db) == {}


def test_cancel_only_pending(session_factory, fake_queue, add_notification):
    add_notification("N1")
    add_notification("N2", status="SENT")
    fake_queue.jobs["N1"] = None
    scheduler = NotificationScheduler(session_factory, fake_queue)

    assert asyncio.run(scheduler.cancel("N1")) is True
    assert asyncio.run(scheduler.cancel("N1")) is False
    assert asyncio.run(scheduler.cancel("N2")) is False

    assert fake_queue.removed == ["N1"]
    assert "N1" not in fake_queue.jobs
    with session_factory() as db:
        assert store.get_notification(db, "N1").status == "CANCELLED"
        assert store.get_notification(db, "N2").status == "SENT"


def test_cancel_survives_queue_errors(session_factory, add_notification):
    add_notification("N1")

    class BrokenQueue(FakeQueue):
        async def remove(self, notification_id):
            raise ConnectionError("redis down")

    assert asyncio.run(NotificationScheduler(session_factory, BrokenQueue()).cancel("N1")) is True
    with session_factory() as db:
        assert store.get_notification(db, "N1").status == "CANCELLED"


def test_stats_and_listing(session_factory, fake_queue, add_notification):
    now = datetime.now(timezone.utc)
    add_notification("N1", "U1", scheduled_at=now + timedelta(hours=2))
    add_notification("N2", "U1", scheduled_at=now + timedelta(hours=1))
    add_notification("N3", "U1", status="SENT")
    add_notification("N4", "U2", status="FAILED")
    scheduler = NotificationScheduler(session_factory, fake_queue)

    assert scheduler.stats() == {"pending": 2, "sent": 1, "failed": 1, "cancelled": 0, "total": 4}
    assert scheduler.stats(user_id="U2") == {"pending": 0, "sent": 0, "failed": 1, "cancelled": 0, "total": 1}
    assert [n.id for n in scheduler.list_for_user("U1", status="PENDING")] == ["N2", "N1"]
    assert {n.id for n in scheduler.list_for_user("U1")} == {"N1", "N2", "N3"}
