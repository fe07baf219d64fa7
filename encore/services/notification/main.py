"""Notification service lifecycle, delivery worker, and read endpoints."""

import asyncio
from contextlib import asynccontextmanager
from time import perf_counter

from arq import create_pool
from arq.worker import Worker
from fastapi import FastAPI, Header, HTTPException, Request

from encore.common.config import settings
from encore.common.db import SessionLocal, init_db
from encore.common.logging import configure_logging, logger
from encore.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from encore.common.startup import log_startup_config
from encore.common.tracing import instrument_app, setup_tracing
from encore.services.notification import history, store
from encore.services.notification.queue import NotificationQueue, WorkerSettings
from encore.services.notification.recovery import NotificationRecovery
from encore.services.notification.scheduler import NotificationScheduler
from encore.services.notification.schemas import (
    HistoryEntryResponse,
    MarkReadRequest,
    NotificationStatsResponse,
    ScheduledNotificationResponse,
    ScheduleNotificationRequest,
    UnreadCountResponse,
)

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(settings)


def build_worker(redis_pool) -> Worker:
    """In-process arq worker sharing the app's Redis pool."""

    return Worker(
        functions=WorkerSettings.functions,
        queue_name=WorkerSettings.queue_name,
        redis_pool=redis_pool,
        max_jobs=WorkerSettings.max_jobs,
        max_tries=WorkerSettings.max_tries,
        keep_result=WorkerSettings.keep_result,
        on_startup=WorkerSettings.on_startup,
        on_shutdown=WorkerSettings.on_shutdown,
        on_job_start=WorkerSettings.on_job_start,
        after_job_end=WorkerSettings.after_job_end,
        handle_signals=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Recover lost jobs, then run the delivery worker with the app lifecycle."""

    init_db()
    redis = await create_pool(WorkerSettings.redis_settings, default_queue_name=settings.notify_queue_name)
    queue = NotificationQueue(redis)
    app.state.scheduler = NotificationScheduler(SessionLocal, queue)
    await NotificationRecovery(SessionLocal, queue).run_full_recovery()
    worker = build_worker(redis)
    worker_task = asyncio.create_task(worker.async_run())
    yield
    worker_task.cancel()
    await worker.close()
    await redis.aclose()


app = FastAPI(title="Encore Notification Service", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=settings.service_name, route=route, method=method).observe(
            elapsed
        )
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@app.post("/scheduled-notifications", response_model=ScheduledNotificationResponse, status_code=201)
async def schedule_notification(
    req: ScheduleNotificationRequest,
    request: Request,
    x_api_key: str | None = Header(default=None),
):
    """Persist a PENDING notification and enqueue its delivery job."""

    enforce_api_key(x_api_key)
    try:
        notification = await request.app.state.scheduler.schedule(
            user_id=req.user_id,
            title=req.title,
            message=req.message,
            scheduled_at=req.scheduled_at,
            data=req.data,
            concert_id=req.concert_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ScheduledNotificationResponse.model_validate(notification)


@app.get("/scheduled-notifications/stats", response_model=NotificationStatsResponse)
def scheduled_notification_stats(
    request: Request,
    user_id: str | None = None,
    x_api_key: str | None = Header(default=None),
):
    """Counts per status, across all users or for one."""

    enforce_api_key(x_api_key)
    return NotificationStatsResponse(**request.app.state.scheduler.stats(user_id=user_id))


@app.get("/scheduled-notifications/{notification_id}", response_model=ScheduledNotificationResponse)
def get_scheduled_notification(notification_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        notification = store.get_notification(db, notification_id)
        if not notification:
            raise HTTPException(status_code=404, detail="notification not found")
        return ScheduledNotificationResponse.model_validate(notification)


@app.post("/scheduled-notifications/{notification_id}/cancel")
async def cancel_scheduled_notification(
    notification_id: str,
    request: Request,
    x_api_key: str | None = Header(default=None),
):
    """Cancel a notification that is still PENDING and drop its queued job."""

    enforce_api_key(x_api_key)
    if not await request.app.state.scheduler.cancel(notification_id):
        raise HTTPException(status_code=409, detail="notification is not pending")
    return {"id": notification_id, "status": "CANCELLED"}


@app.get("/users/{user_id}/scheduled-notifications", response_model=list[ScheduledNotificationResponse])
def list_scheduled_notifications(
    user_id: str,
    request: Request,
    status: str | None = None,
    x_api_key: str | None = Header(default=None),
):
    enforce_api_key(x_api_key)
    notifications = request.app.state.scheduler.list_for_user(user_id, status=status)
    return [ScheduledNotificationResponse.model_validate(notification) for notification in notifications]


@app.get("/users/{user_id}/notifications", response_model=list[HistoryEntryResponse])
def list_history(
    user_id: str,
    is_read: bool | None = None,
    offset: int = 0,
    limit: int = 50,
    x_api_key: str | None = Header(default=None),
):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        entries = history.list_for_user(db, user_id, is_read=is_read, offset=max(0, offset), limit=min(limit, 200))
        return [HistoryEntryResponse.model_validate(entry) for entry in entries]


@app.get("/users/{user_id}/notifications/unread-count", response_model=UnreadCountResponse)
def unread_count(user_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        counts = history.count_by_read_status(db, user_id)
    return UnreadCountResponse(user_id=user_id, unread=counts["unread"], read=counts["read"])


@app.post("/notifications/history/{history_id}/read")
def mark_history_read(history_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        if history.get_entry(db, history_id) is None:
            raise HTTPException(status_code=404, detail="history entry not found")
        changed = history.mark_read(db, history_id)
        db.commit()
    return {"id": history_id, "updated": changed}


@app.post("/users/{user_id}/notifications/read-all")
def mark_all_history_read(user_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        updated = history.mark_all_read(db, user_id)
        db.commit()
    logger.info("history_marked_read user_id=%s updated=%s", user_id, updated)
    return {"user_id": user_id, "updated": updated}


@app.post("/users/{user_id}/notifications/read")
def mark_history_batch_read(user_id: str, req: MarkReadRequest, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        updated = history.mark_many_read(db, user_id, req.ids)
        db.commit()
    return {"user_id": user_id, "updated": updated}


@app.delete("/notifications/history/{history_id}")
def delete_history_entry(history_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        if not history.delete_entry(db, history_id):
            raise HTTPException(status_code=404, detail="history entry not found")
        db.commit()
    return {"id": history_id, "deleted": True}


@app.delete("/users/{user_id}/notifications")
def delete_user_history(user_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        deleted = history.delete_for_user(db, user_id)
        db.commit()
    logger.info("history_deleted user_id=%s deleted=%s", user_id, deleted)
    return {"user_id": user_id, "deleted": deleted}


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
