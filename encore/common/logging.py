"""JSON logs carrying the trace, job and notification a line belongs to."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from encore.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
job_id_ctx: ContextVar[str] = ContextVar("job_id", default="")
notification_id_ctx: ContextVar[str] = ContextVar("notification_id", default="")

CONTEXT_FIELDS = {
    "trace_id": trace_id_ctx,
    "job_id": job_id_ctx,
    "notification_id": notification_id_ctx,
}

# Chatty per-poll loggers from the queue and HTTP stacks.
QUIET_LOGGERS = ("arq.worker", "arq.jobs", "httpx")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for field, var in CONTEXT_FIELDS.items():
            setattr(record, field, var.get())
        return True


@contextmanager
def log_context(**fields: str):
    """Bind correlation fields for the enclosed block, restoring the old values after."""

    tokens = [(CONTEXT_FIELDS[name], CONTEXT_FIELDS[name].set(value or "")) for name, value in fields.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(level: str | None = None) -> None:
    """Route every logger through one stdout JSON handler. Safe to call repeatedly."""

    context_filter = ContextFilter()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            " ".join(f"%({name})s" for name in ("asctime", "levelname", "name", "service_name", *CONTEXT_FIELDS))
            + " %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("encore")
