"""ARQ (Redis) job queue adapter for scheduled notification delivery.

The job carries only the notification id; arq owns attempt counting and
deferral. `apply_retry_policy` turns the worker's typed outcome into arq's
retry signal, and marks the notification FAILED once retries run out.
"""

from datetime import datetime

from arq import Retry
from arq.connections import RedisSettings
from arq.constants import in_progress_key_prefix, job_key_prefix, result_key_prefix, retry_key_prefix
from arq.jobs import Job, JobStatus

from encore.common.config import settings
from encore.common.db import SessionLocal
from encore.common.logging import configure_logging, job_id_ctx, logger
from encore.common.metrics import retries_total
from encore.common.ratelimit import TokenBucket
from encore.services.notification.directory import SqlUserDirectory
from encore.services.notification.gateway import FirebasePushGateway
from encore.services.notification.service import DeliveryOutcome, DeliveryWorker, LoggingDeliveryHooks, OutcomeKind

JOB_FUNCTION = "deliver_scheduled_notification"
THROUGHPUT_KEY = "tokenbucket:notification-delivery"
LIVE_JOB_STATUSES = {JobStatus.deferred, JobStatus.queued, JobStatus.in_progress}


class NotificationQueue:
    """Producer-side view of the delivery queue; job id == notification id."""

    def __init__(self, redis, queue_name: str | None = None) -> None:
        self.redis = redis
        self.queue_name = queue_name or settings.notify_queue_name

    async def enqueue(self, notification_id: str, defer_until: datetime | None = None) -> bool:
        """Queue one delivery; False when a job with this id already exists."""

        job = await self.redis.enqueue_job(
            JOB_FUNCTION,
            notification_id,
            _job_id=notification_id,
            _queue_name=self.queue_name,
            _defer_until=defer_until,
        )
        return job is not None

    async def job_exists(self, notification_id: str) -> bool:
        """True while a job is waiting or running; a kept result from a finished job does not count."""

        status = await Job(notification_id, self.redis, _queue_name=self.queue_name).status()
        return status in LIVE_JOB_STATUSES

    async def requeue(self, notification_id: str, defer_until: datetime | None = None) -> bool:
        """Enqueue again under the same id, dropping any kept result that would block it."""

        await self.redis.delete(result_key_prefix + notification_id)
        return await self.enqueue(notification_id, defer_until=defer_until)

    async def remove(self, notification_id: str) -> bool:
        """Drop a job that has not started yet; a running job is left to the worker's status guard."""

        if await self.redis.exists(in_progress_key_prefix + notification_id):
            return False
        removed = await self.redis.zrem(self.queue_name, notification_id)
        await self.redis.delete(job_key_prefix + notification_id, retry_key_prefix + notification_id)
        return bool(removed)


def retry_backoff_seconds(job_try: int) -> float:
    """Exponential backoff starting at `notify_backoff_ms`, capped at `notify_backoff_max_ms`."""

    base = max(1, int(settings.notify_backoff_ms))
    cap = max(base, int(settings.notify_backoff_max_ms))
    exponent = max(0, int(job_try) - 1)
    return min(cap, base * (2**exponent)) / 1000.0


def apply_retry_policy(
    worker: DeliveryWorker,
    notification_id: str,
    outcome: DeliveryOutcome,
    job_try: int,
    max_tries: int,
) -> str:
    """Return the job result, or raise `Retry` for a transient failure with tries left."""

    if not outcome.should_retry:
        return outcome.kind.value
    if job_try < max_tries:
        defer = retry_backoff_seconds(job_try)
        retries_total.labels(service=worker.service_name, dependency="push_gateway").inc()
        logger.warning(
            "delivery_retry_scheduled notification_id=%s job_try=%s defer_s=%s reason=%s",
            notification_id,
            job_try,
            defer,
            outcome.reason,
        )
        raise Retry(defer=defer)
    reason = f"Retries exhausted: {outcome.reason}"
    try:
        worker.fail_permanently(notification_id, reason)
    except Exception:
        logger.exception("mark_failed_error notification_id=%s", notification_id)
        raise
    logger.error("delivery_retries_exhausted notification_id=%s job_try=%s", notification_id, job_try)
    return OutcomeKind.PERMANENT_FAILURE.value


async def deliver_scheduled_notification(ctx, notification_id: str) -> str:
    """ARQ job: throttle, deliver, then map the outcome onto arq's retry semantics."""

    worker: DeliveryWorker = ctx["delivery_worker"]
    limiter: TokenBucket | None = ctx.get("throughput_limiter")
    if limiter is not None:
        await limiter.acquire()
    outcome = await worker.process(notification_id)
    return apply_retry_policy(
        worker,
        notification_id,
        outcome,
        job_try=ctx.get("job_try", 1),
        max_tries=ctx.get("max_tries", settings.notify_max_tries),
    )


async def _startup(ctx) -> None:
    """Build the delivery worker once per process."""

    configure_logging()
    if "delivery_worker" not in ctx:
        ctx["delivery_worker"] = DeliveryWorker(
            SessionLocal,
            users=SqlUserDirectory(SessionLocal),
            gateway=FirebasePushGateway.from_credentials(settings.firebase_credentials_path),
            hooks=LoggingDeliveryHooks(),
        )
    if "throughput_limiter" not in ctx:
        ctx["throughput_limiter"] = TokenBucket(ctx["redis"], THROUGHPUT_KEY, settings.notify_throughput_per_second)
    ctx["max_tries"] = settings.notify_max_tries
    logger.info(
        "notification_worker_ready queue=%s max_jobs=%s throughput_per_s=%s",
        settings.notify_queue_name,
        settings.notify_max_jobs,
        settings.notify_throughput_per_second,
    )


async def _shutdown(ctx) -> None:
    logger.info("notification_worker_closed queue=%s", settings.notify_queue_name)


async def _job_start(ctx) -> None:
    job_id_ctx.set(ctx.get("job_id", ""))
    logger.info("job_started job_id=%s job_try=%s", ctx.get("job_id"), ctx.get("job_try"))


async def _job_end(ctx) -> None:
    logger.info("job_finished job_id=%s job_try=%s", ctx.get("job_id"), ctx.get("job_try"))
    job_id_ctx.set("")


class WorkerSettings:
    # Class attributes so `arq encore.services.notification.queue.WorkerSettings` works unchanged.
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.notify_queue_name
    functions = [deliver_scheduled_notification]
    max_jobs = settings.notify_max_jobs
    max_tries = settings.notify_max_tries
    keep_result = settings.notify_job_keep_result_seconds
    on_startup = _startup
    on_shutdown = _shutdown
    on_job_start = _job_start
    after_job_end = _job_end
