"""Application configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

from shared.constants import (
    BACKOFF_BASE_MS,
    CIRCUIT_COOLDOWN_MS,
    CIRCUIT_FAILURE_THRESHOLD,
    PAAPI_TIMEOUT_SECONDS,
    REFRESH_BATCH_SIZE,
    REFRESH_INTERVAL_HOURS,
    REFRESH_MAX_RETRIES,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "product-refresh"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # -------------------------------------------------------------------------
    # Backing Store (PostgreSQL)
    # -------------------------------------------------------------------------
    database_url: str = ""
    database_password: str = ""
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def store_configured(self) -> bool:
        """Whether a store connection URL has been provided."""
        return bool(self.database_url.strip())

    @property
    def resolved_database_url(self) -> str:
        """Async SQLAlchemy URL with the privileged credential applied."""
        url = make_url(self.database_url)
        if url.drivername in ("postgres", "postgresql"):
            url = url.set(drivername="postgresql+asyncpg")
        if self.database_password:
            url = url.set(password=self.database_password)
        return url.render_as_string(hide_password=False)

    @property
    def database_url_sync(self) -> str:
        """Synchronous URL for Alembic."""
        url = make_url(self.resolved_database_url).set(drivername="postgresql")
        return url.render_as_string(hide_password=False)

    # -------------------------------------------------------------------------
    # Amazon Product Advertising API
    # -------------------------------------------------------------------------
    paapi_access_key: str = ""
    paapi_secret_key: str = ""
    paapi_partner_tag: str = ""
    paapi_default_marketplace: str = "US"
    paapi_timeout_seconds: float = PAAPI_TIMEOUT_SECONDS

    # -------------------------------------------------------------------------
    # Circuit Breaker
    # -------------------------------------------------------------------------
    circuit_failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD
    circuit_cooldown_ms: int = CIRCUIT_COOLDOWN_MS
    circuit_state_backend: Literal["memory", "redis"] = "memory"

    # -------------------------------------------------------------------------
    # Refresh Worker
    # -------------------------------------------------------------------------
    refresh_batch_size: int = REFRESH_BATCH_SIZE
    refresh_interval_hours: int = REFRESH_INTERVAL_HOURS
    refresh_max_retries: int = REFRESH_MAX_RETRIES
    refresh_backoff_base_ms: int = BACKOFF_BASE_MS
    refresh_run_deadline_seconds: float = 540.0
    refresh_lock_ttl_seconds: int = 600

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------
    refresh_schedule_minute: str = "0"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
