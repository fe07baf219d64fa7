"""HTTP surface for scheduling, cancelling, and reading notification history."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from encore.services.notification import history
from encore.services.notification import main as notification_main
from encore.services.notification.scheduler import NotificationScheduler

HEADERS = {"X-API-Key": "test-api-key"}


@pytest.fixture
def client(session_factory, fake_queue, monkeypatch):
    monkeypatch.setattr(notification_main, "SessionLocal", session_factory)
    notification_main.app.state.scheduler = NotificationScheduler(session_factory, fake_queue)
    # No `with` block: the lifespan (Redis pool, in-process worker) is not started.
    return TestClient(notification_main.app)


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_requires_api_key(client):
    assert client.get("/users/U1/notifications").status_code == 401


def test_schedule_and_fetch(client, fake_queue):
    when = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    resp = client.post(
        "/scheduled-notifications",
        json={"user_id": "U1", "title": "T", "message": "M", "scheduled_at": when},
        headers=HEADERS,
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "PENDING"
    assert fake_queue.enqueued[0][0] == body["id"]

    fetched = client.get(f"/scheduled-notifications/{body['id']}", headers=HEADERS)
    assert fetched.json()["id"] == body["id"]


def test_schedule_in_past_is_rejected(client):
    when = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    resp = client.post(
        "/scheduled-notifications",
        json={"user_id": "U1", "title": "T", "message": "M", "scheduled_at": when},
        headers=HEADERS,
    )

    assert resp.status_code == 400


def test_unknown_notification_is_404(client):
    assert client.get("/scheduled-notifications/missing", headers=HEADERS).status_code == 404


def test_cancel(client, add_notification):
    add_notification("N1")

    assert client.post("/scheduled-notifications/N1/cancel", headers=HEADERS).json()["status"] == "CANCELLED"
    assert client.post("/scheduled-notifications/N1/cancel", headers=HEADERS).status_code == 409


def test_history_read_flow(client, session_factory):
    with session_factory() as db:
        history.insert_many(
            db,
            [
                history.new_history_entry("h1", "U1", "scheduled", "T", "M", data={"concertId": "C1"}),
                history.new_history_entry("h2", "U1", "scheduled", "T", "M"),
            ],
        )
        db.commit()

    listed = client.get("/users/U1/notifications", headers=HEADERS).json()
    assert {entry["id"] for entry in listed} == {"h1", "h2"}
    assert client.get("/users/U1/notifications/unread-count", headers=HEADERS).json() == {
        "user_id": "U1",
        "unread": 2,
        "read": 0,
    }

    assert client.post("/notifications/history/h1/read", headers=HEADERS).json() == {"id": "h1", "updated": True}
    assert client.post("/notifications/history/nope/read", headers=HEADERS).status_code == 404
    assert client.post("/users/U1/notifications/read-all", headers=HEADERS).json()["updated"] == 1
    assert client.get("/users/U1/notifications?is_read=false", headers=HEADERS).json() == []


def test_cancel_drops_queued_job(client, fake_queue, add_notification):
    add_notification("N1")
    fake_queue.jobs["N1"] = None

    assert client.post("/scheduled-notifications/N1/cancel", headers=HEADERS).status_code == 200
    assert fake_queue.removed == ["N1"]


def test_scheduled_listing_and_stats(client, add_notification):
    add_notification("N1", "U1")
    add_notification("N2", "U1", status="SENT")
    add_notification("N3", "U2", status="CANCELLED")

    listed = client.get("/users/U1/scheduled-notifications?status=PENDING", headers=HEADERS).json()
    assert [entry["id"] for entry in listed] == ["N1"]
    assert client.get("/scheduled-notifications/stats", headers=HEADERS).json() == {
        "pending": 1,
        "sent": 1,
        "failed": 0,
        "cancelled": 1,
        "total": 3,
    }
    assert client.get("/scheduled-notifications/stats?user_id=U2", headers=HEADERS).json()["total"] == 1


def test_history_batch_read_and_delete(client, session_factory):
    with session_factory() as db:
        history.insert_many(
            db,
            [
                history.new_history_entry("h1", "U1", "scheduled", "T", "M"),
                history.new_history_entry("h2", "U1", "scheduled", "T", "M"),
                history.new_history_entry("x1", "U2", "scheduled", "T", "M"),
            ],
        )
        db.commit()

    resp = client.post("/users/U1/notifications/read", json={"ids": ["h1", "x1"]}, headers=HEADERS)
    assert resp.json() == {"user_id": "U1", "updated": 1}
    assert client.post("/users/U1/notifications/read", json={"ids": []}, headers=HEADERS).status_code == 422

    assert client.delete("/notifications/history/h1", headers=HEADERS).json() == {"id": "h1", "deleted": True}
    assert client.delete("/notifications/history/h1", headers=HEADERS).status_code == 404
    assert client.delete("/users/U1/notifications", headers=HEADERS).json() == {"user_id": "U1", "deleted": 1}
    assert client.get("/users/U2/notifications/unread-count", headers=HEADERS).json()["unread"] == 1
