"""Engine, session factory and column types for the notification tables."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import TypeDecorator

from encore.common.config import settings


engine = create_engine(settings.postgres_dsn, pool_pre_ping=True)
# Workers read rows in one session and act on them after it closes.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken to be UTC already."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamp column that always stores and returns UTC.

    SQLite drops the offset on write and hands back naive values, so both
    directions are normalised here instead of at every call site.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


class Base(DeclarativeBase):
    pass


def init_db(bind=None) -> None:
    """Create the notification tables if they are missing."""

    import encore.services.notification.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
