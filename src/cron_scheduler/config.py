"""Runtime configuration loaded from the environment."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the scheduler processes. Every field can be overridden with a
    `CRON_SCHEDULER_` prefixed environment variable, e.g.
    `CRON_SCHEDULER_WORKER_CONCURRENCY=20`.
    """

    database_url: str = Field(default="sqlite+aiosqlite:///./cron_scheduler.db", description="SQLAlchemy async database URL")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis holding the repeatable trigger registry")
    broker_url: str = Field(default="redis://localhost:6379/1", description="Celery broker URL")

    worker_concurrency: int = Field(default=10, ge=1, description="Deliveries processed at the same time")
    rate_limit_max: int = Field(default=100, ge=1, description="Dispatches allowed per rate limit window")
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    retry_backoff_ms: int = Field(default=2000, ge=0, description="Base delay of the exponential redelivery backoff")
    response_body_limit: int = Field(default=5000, ge=0, description="Characters of the response body kept per attempt")

    retention_days: int = Field(default=30, ge=1, description="Execution attempts older than this are purged")
    retention_cron: str = Field(default="0 3 * * *", description="When the retention sweep runs, in UTC")

    shutdown_grace_seconds: float = Field(default=30.0, ge=0, description="How long in-flight deliveries may run after shutdown starts")
    poll_interval_seconds: float = Field(default=1.0, gt=0, description="How often due repeatable triggers are collected")

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CRON_SCHEDULER_",
        env_file=".env",
        extra="ignore",
    )
