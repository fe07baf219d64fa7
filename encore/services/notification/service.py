"""Delivery worker for scheduled push notifications.

One `process` call takes a notification id through the full send-or-fail
sequence and reports a typed `DeliveryOutcome`. Permanent failures are
terminal here; transient failures leave the row PENDING and are handed back
to the queue adapter, which owns retry/backoff. Only failures before the
gateway accepts the push are transient.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from time import perf_counter
from uuid import uuid4

from encore.common.config import settings
from encore.common.db import as_utc
from encore.common.logging import log_context, logger
from encore.common.metrics import (
    duplicate_jobs_skipped_total,
    invalid_tokens_cleared_total,
    notification_deliveries_total,
    notification_schedule_delay_seconds,
    push_gateway_latency_seconds,
)
from encore.common.state_machine import PENDING
from encore.common.tracing import current_trace_id, get_tracer
from encore.services.notification import history, store
from encore.services.notification.directory import UserDirectory
from encore.services.notification.gateway import PushGateway, PushPayload, SendResult
from encore.services.notification.models import HISTORY_TYPE_SCHEDULED, ScheduledNotification

REASON_USER_NOT_FOUND = "User not found"
REASON_NO_TOKEN = "No FCM token registered"
REASON_INVALID_TOKEN = "Invalid or expired FCM token"

tracer = get_tracer("encore.notification")


class OutcomeKind(str, Enum):
    SENT = "SENT"
    SKIPPED = "SKIPPED"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    # Push accepted by the gateway but the history row could not be written.
    SENT_UNRECORDED = "SENT_UNRECORDED"


@dataclass(frozen=True)
class DeliveryOutcome:
    kind: OutcomeKind
    reason: str | None = None
    history_id: str | None = None

    @property
    def should_retry(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT_FAILURE


class DeliveryHooks:
    """Observation points wired in when the worker is built. No-op by default."""

    def on_outcome(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        pass


class LoggingDeliveryHooks(DeliveryHooks):
    """Log every outcome and keep the delivery counters current."""

    def __init__(self, service_name: str | None = None) -> None:
        self.service_name = service_name or settings.service_name

    def on_outcome(self, notification_id: str, outcome: DeliveryOutcome) -> None:
        notification_deliveries_total.labels(service=self.service_name, outcome=outcome.kind.value).inc()
        if outcome.kind is OutcomeKind.SKIPPED:
            duplicate_jobs_skipped_total.labels(service=self.service_name).inc()
        if outcome.kind is OutcomeKind.SENT:
            logger.info("notification_sent notification_id=%s history_id=%s", notification_id, outcome.history_id)
        elif outcome.kind is OutcomeKind.TRANSIENT_FAILURE:
            logger.error("notification_transient_failure notification_id=%s reason=%s", notification_id, outcome.reason)
        elif outcome.kind is OutcomeKind.SENT_UNRECORDED:
            logger.error(
                "notification_sent_unrecorded notification_id=%s history_id=%s reason=%s",
                notification_id,
                outcome.history_id,
                outcome.reason,
            )
        else:
            logger.warning(
                "notification_not_sent notification_id=%s outcome=%s reason=%s",
                notification_id,
                outcome.kind.value,
                outcome.reason,
            )


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a `Z` suffix."""

    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_push_payload(notification: ScheduledNotification, history_id: str, unread_count: int) -> PushPayload:
    data = dict(notification.data or {})
    data["notificationId"] = notification.id
    data["scheduledAt"] = format_timestamp(notification.scheduled_at)
    data["historyId"] = history_id
    if notification.concert_id:
        data["concertId"] = notification.concert_id
    return PushPayload(title=notification.title, body=notification.message, data=data, badge=unread_count + 1)


class DeliveryWorker:
    """Executes one delivery job against the stores, the directory, and the gateway."""

    def __init__(
        self,
        session_factory,
        users: UserDirectory,
        gateway: PushGateway,
        hooks: DeliveryHooks | None = None,
        service_name: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.users = users
        self.gateway = gateway
        self.hooks = hooks or DeliveryHooks()
        self.service_name = service_name or settings.service_name

    async def process(self, notification_id: str) -> DeliveryOutcome:
        """Run the send-or-fail sequence; never raises for delivery failures."""

        with tracer.start_as_current_span("notification.deliver") as span:
            span.set_attribute("notification.id", notification_id)
            with log_context(notification_id=notification_id, trace_id=current_trace_id()):
                try:
                    outcome = await self._deliver(notification_id)
                except Exception as exc:
                    logger.exception("notification_delivery_error notification_id=%s", notification_id)
                    outcome = DeliveryOutcome(OutcomeKind.TRANSIENT_FAILURE, reason=_describe(exc))
                span.set_attribute("notification.outcome", outcome.kind.value)
                self.hooks.on_outcome(notification_id, outcome)
        return outcome

    async def _deliver(self, notification_id: str) -> DeliveryOutcome:
        with self.session_factory() as db:
            notification = store.get_notification(db, notification_id)
        if notification is None:
            return DeliveryOutcome(OutcomeKind.SKIPPED, reason="Notification not found")
        # Duplicate job delivery or a cancel that landed before this attempt.
        if notification.status != PENDING:
            return DeliveryOutcome(OutcomeKind.SKIPPED, reason=f"status={notification.status}")

        notification_schedule_delay_seconds.labels(service=self.service_name).observe(
            max(0.0, (datetime.now(timezone.utc) - as_utc(notification.scheduled_at)).total_seconds())
        )

        user = self.users.find_by_id(notification.user_id)
        if user is None:
            return self._fail(notification_id, REASON_USER_NOT_FOUND)
        if not user.fcm_token:
            return self._fail(notification_id, REASON_NO_TOKEN)

        with self.session_factory() as db:
            unread_count = history.count_unread(db, notification.user_id)

        history_id = str(uuid4())
        payload = build_push_payload(notification, history_id, unread_count)

        start = perf_counter()
        try:
            result = await self.gateway.send(user.fcm_token, payload)
        finally:
            push_gateway_latency_seconds.labels(service=self.service_name).observe(max(0.0, perf_counter() - start))

        if result is SendResult.INVALID_TOKEN:
            outcome = self._fail(notification_id, REASON_INVALID_TOKEN)
            if self.users.clear_token(notification.user_id):
                invalid_tokens_cleared_total.labels(service=self.service_name).inc()
                logger.warning("invalid_token_cleared user_id=%s", notification.user_id)
            return outcome

        # From here on the device has the push; no failure may hand the job back for retry.
        try:
            recorded = self._record_sent(notification, history_id)
        except Exception as exc:
            logger.exception("sent_record_error notification_id=%s history_id=%s", notification_id, history_id)
            self._mark_sent_only(notification_id, history_id)
            return DeliveryOutcome(OutcomeKind.SENT_UNRECORDED, reason=_describe(exc), history_id=history_id)
        if not recorded:
            return DeliveryOutcome(OutcomeKind.SKIPPED, reason="status changed during send")
        return DeliveryOutcome(OutcomeKind.SENT, history_id=history_id)

    def _record_sent(self, notification: ScheduledNotification, history_id: str) -> bool:
        # SENT and its history row commit together, so one exists iff the other does.
        with self.session_factory() as db:
            if not store.mark_sent(db, notification.id):
                db.rollback()
                logger.warning(
                    "sent_transition_lost notification_id=%s history_id=%s",
                    notification.id,
                    history_id,
                )
                return False
            entry_data = dict(notification.data or {})
            if notification.concert_id:
                entry_data["concertId"] = notification.concert_id
            history.insert_many(
                db,
                [
                    history.new_history_entry(
                        history_id=history_id,
                        user_id=notification.user_id,
                        type=HISTORY_TYPE_SCHEDULED,
                        title=notification.title,
                        message=notification.message,
                        data=entry_data,
                        concert_id=notification.concert_id,
                    )
                ],
            )
            db.commit()
        return True

    def _mark_sent_only(self, notification_id: str, history_id: str) -> bool:
        """Move the row out of PENDING without its history row so no later job resends it."""

        try:
            with self.session_factory() as db:
                changed = store.mark_sent(db, notification_id)
                db.commit()
        except Exception:
            # Still PENDING: stale-job recovery is the only thing that can pick it up again.
            logger.exception("sent_fallback_error notification_id=%s history_id=%s", notification_id, history_id)
            return False
        return changed

    def _fail(self, notification_id: str, reason: str) -> DeliveryOutcome:
        self.fail_permanently(notification_id, reason)
        return DeliveryOutcome(OutcomeKind.PERMANENT_FAILURE, reason=reason)

    def fail_permanently(self, notification_id: str, reason: str) -> bool:
        """Mark FAILED if still PENDING."""

        with self.session_factory() as db:
            changed = store.mark_failed(db, notification_id, reason)
            db.commit()
        return changed
