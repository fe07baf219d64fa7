"""Log the effective settings once at boot, with credentials masked."""

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from encore.common.config import CommonSettings
from encore.common.logging import logger

SECRET_FIELDS = {"api_key", "firebase_credentials_path"}
URL_FIELDS = {"postgres_dsn", "redis_url"}


def _mask_url(value: str) -> str:
    try:
        return make_url(value).render_as_string(hide_password=True)
    except ArgumentError:
        return "<redacted>"


def redacted_config(config: CommonSettings) -> dict:
    """Settings as a plain dict, safe to write to logs."""

    values = config.model_dump()
    for field in SECRET_FIELDS:
        if values.get(field):
            values[field] = "<redacted>"
    for field in URL_FIELDS:
        if values.get(field):
            values[field] = _mask_url(values[field])
    return values


def log_startup_config(config: CommonSettings) -> None:
    logger.info("startup_config=%s", redacted_config(config))
