"""User directory adapter: token lookup and narrow token clearing."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import update

from encore.services.notification.models import User


@dataclass(frozen=True)
class UserRecord:
    id: str
    fcm_token: str | None


class UserDirectory(Protocol):
    def find_by_id(self, user_id: str) -> UserRecord | None: ...

    def clear_token(self, user_id: str) -> bool: ...


class SqlUserDirectory:
    """Reads and clears device tokens on the shared `users` table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def find_by_id(self, user_id: str) -> UserRecord | None:
        with self.session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            return UserRecord(id=user.id, fcm_token=user.fcm_token)

    def clear_token(self, user_id: str) -> bool:
        """Null the token columns only; other flows update the rest of the row concurrently."""

        table = User.__table__
        with self.session_factory() as db:
            result = db.execute(
                update(table)
                .where(table.c.id == user_id)
                .values(fcm_token=None, fcm_token_updated_at=datetime.now(timezone.utc))
            )
            db.commit()
            return result.rowcount == 1
