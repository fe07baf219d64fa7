"""Central environment-driven settings for the notification service.

The service process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "notification"
    log_level: str = "INFO"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    firebase_credentials_path: str | None = None
    notify_queue_name: str = "scheduled-notifications"
    notify_max_jobs: int = 5
    notify_max_tries: int = 3
    notify_backoff_ms: int = 2000
    notify_backoff_max_ms: int = 60_000
    notify_throughput_per_second: int = 10
    notify_history_retention_days: int = 90
    notify_stale_grace_seconds: int = 300
    notify_stale_max_age_seconds: int = 86400
    notify_job_keep_result_seconds: int = 86400
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
