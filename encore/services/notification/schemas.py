"""API request/response schemas for notification endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ScheduleNotificationRequest(BaseModel):
    """Payload accepted by `POST /scheduled-notifications`."""

    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    scheduled_at: datetime
    concert_id: str | None = None
    data: dict[str, str] = Field(default_factory=dict)


class ScheduledNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    concert_id: str | None = None
    title: str
    message: str
    scheduled_at: datetime
    status: str
    error_reason: str | None = None
    sent_at: datetime | None = None


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    concert_id: str | None = None
    type: str
    title: str
    message: str
    data: dict[str, str]
    is_read: bool
    sent_at: datetime
    expires_at: datetime


class UnreadCountResponse(BaseModel):
    user_id: str
    unread: int
    read: int


class MarkReadRequest(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=500)


class NotificationStatsResponse(BaseModel):
    pending: int
    sent: int
    failed: int
    cancelled: int
    total: int
