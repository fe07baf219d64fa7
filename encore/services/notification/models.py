"""Notification persistence models (scheduled notifications + delivery history)."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from encore.common.db import Base, UTCDateTime
from encore.common.state_machine import PENDING

JSONMap = JSON().with_variant(JSONB(), "postgresql")

HISTORY_TYPE_SCHEDULED = "scheduled"


class ScheduledNotification(Base):
    """One planned push and its lifecycle status."""

    __tablename__ = "scheduled_notifications"
    __table_args__ = (
        Index("ix_scheduled_notifications_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_scheduled_notifications_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String, index=True)
    concert_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(String)
    data: Mapped[dict] = mapped_column(JSONMap, default=dict)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime())
    status: Mapped[str] = mapped_column(String, default=PENDING)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    error_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now()
    )


class NotificationHistory(Base):
    """Immutable record of a delivered notification; only `is_read` changes."""

    __tablename__ = "notification_history"
    __table_args__ = (
        Index("ix_notification_history_user_read_created", "user_id", "is_read", "created_at"),
    )

    # Pre-generated by the delivery worker; equals the `historyId` the device received.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    concert_id: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(String)
    data: Mapped[dict] = mapped_column(JSONMap, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime())
    created_at: Mapped[datetime] = mapped_column(UTCDateTime())
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), index=True)


class User(Base):
    """Token-bearing slice of the user document owned by the auth service."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    fcm_token: Mapped[str | None] = mapped_column(String, nullable=True)
    fcm_token_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
