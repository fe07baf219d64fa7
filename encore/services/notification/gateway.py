"""Push gateway contract and the Firebase Cloud Messaging adapter.

`send` has three outcomes: ACCEPTED, INVALID_TOKEN (the device token is dead
and retrying can never succeed) or an exception for anything transient.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from encore.common.logging import logger


class SendResult(str, Enum):
    ACCEPTED = "ACCEPTED"
    INVALID_TOKEN = "INVALID_TOKEN"


@dataclass
class PushPayload:
    """Device-facing notification content."""

    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    badge: int = 0


class PushGateway(Protocol):
    async def send(self, token: str, payload: PushPayload) -> SendResult: ...


def _mask_token(token: str) -> str:
    return f"{token[:20]}..." if len(token) > 20 else token


def is_invalid_token_error(exc: Exception) -> bool:
    """Errors that mean the registration token itself is unusable."""

    if isinstance(exc, (messaging.UnregisteredError, messaging.SenderIdMismatchError)):
        return True
    if isinstance(exc, exceptions.InvalidArgumentError):
        return "registration token" in str(exc).lower()
    return False


def build_message(token: str, payload: PushPayload) -> messaging.Message:
    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=payload.title, body=payload.body),
        data={key: str(value) for key, value in payload.data.items()},
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                sound="default",
                click_action="FLUTTER_NOTIFICATION_CLICK",
                notification_count=payload.badge,
            ),
        ),
        apns=messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=payload.badge))),
    )


class FirebasePushGateway:
    """FCM-backed gateway; the blocking SDK call runs in a worker thread."""

    def __init__(self, app: firebase_admin.App | None = None) -> None:
        self.app = app

    @classmethod
    def from_credentials(cls, credentials_path: str | None) -> "FirebasePushGateway":
        """Initialise (or reuse) the default Firebase app."""

        try:
            app = firebase_admin.get_app()
        except ValueError:
            cred = credentials.Certificate(credentials_path) if credentials_path else None
            app = firebase_admin.initialize_app(cred)
        return cls(app)

    async def send(self, token: str, payload: PushPayload) -> SendResult:
        message = build_message(token, payload)
        try:
            message_id = await asyncio.to_thread(messaging.send, message, app=self.app)
        except Exception as exc:
            if is_invalid_token_error(exc):
                logger.warning("push_token_rejected token=%s error=%s", _mask_token(token), exc)
                return SendResult.INVALID_TOKEN
            raise
        logger.info("push_accepted token=%s message_id=%s", _mask_token(token), message_id)
        return SendResult.ACCEPTED
