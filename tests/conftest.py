"""Shared fixtures: in-memory database, fakes for the push gateway, queue, and Redis."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from encore.common.db import Base
from encore.services.notification.models import ScheduledNotification, User

from tests.fakes import FakeGateway, FakeQueue


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def add_user(session_factory):
    def _add(user_id="U1", token="tok1"):
        with session_factory() as db:
            db.add(User(id=user_id, fcm_token=token))
            db.commit()

    return _add


@pytest.fixture
def add_notification(session_factory):
    def _add(notification_id="N1", user_id="U1", status="PENDING", scheduled_at=None, **fields):
        values = {"title": "T", "message": "M", "data": {}}
        values.update(fields)
        with session_factory() as db:
            notification = ScheduledNotification(
                id=notification_id,
                user_id=user_id,
                status=status,
                scheduled_at=scheduled_at or datetime.now(timezone.utc) - timedelta(seconds=1),
                **values,
            )
            db.add(notification)
            db.commit()
            db.refresh(notification)
        return notification

    return _add


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def fake_queue():
    return FakeQueue()
