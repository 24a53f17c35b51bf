"""
Application configuration using Pydantic settings.

Usage:
    from issue_watcher.config import get_settings
    settings = get_settings()

Contract constants that are not tunable live in issue_watcher.constants.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Unified application settings loaded from environment variables and .env file.

    Required for production:
        - GITHUB_TOKEN (GitHub GraphQL API)
        - LLM_API_KEY (OpenAI-compatible scoring endpoint)
        - EMAIL_API_KEY (transactional email API)
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # App settings
    app_name: str = "Issue Watcher"
    api_prefix: str = "/api"
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Database
    database_url: str = Field(default="sqlite:///issue_watcher.db", validation_alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, validation_alias="DB_MAX_OVERFLOW")
    db_pool_pre_ping: bool = Field(default=True, validation_alias="DB_POOL_PRE_PING")

    # GitHub
    github_token: Optional[str] = Field(default=None, validation_alias="GITHUB_TOKEN")
    github_page_size: int = Field(default=100, validation_alias="GITHUB_PAGE_SIZE")
    github_request_timeout: int = Field(default=60, validation_alias="GITHUB_REQUEST_TIMEOUT")
    # longer waits for the GitHub quota reset raise GitHubRateLimitError instead of sleeping
    github_rate_limit_max_wait: float = Field(default=30.0, validation_alias="GITHUB_RATE_LIMIT_MAX_WAIT")
    max_issues_per_report: int = Field(default=4000, validation_alias="MAX_ISSUES_PER_REPORT")
    report_cache_ttl_seconds: int = Field(default=3600, validation_alias="REPORT_CACHE_TTL_SECONDS")

    # LLM
    llm_api_url: str = Field(default="https://apis.iflow.cn/v1", validation_alias="LLM_API_URL")
    llm_api_key: Optional[str] = Field(default=None, validation_alias="LLM_API_KEY")
    llm_model: str = Field(default="qwen3-max", validation_alias="LLM_MODEL")
    llm_timeout_seconds: float = Field(default=120.0, validation_alias="LLM_TIMEOUT_SECONDS")
    llm_max_tokens: int = Field(default=800, validation_alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.1, validation_alias="LLM_TEMPERATURE")
    llm_estimated_tokens: int = Field(default=1300, validation_alias="LLM_ESTIMATED_TOKENS")

    # LLM rate limiting (fixed windows, unset = no ceiling for that window)
    llm_requests_per_minute: int = Field(default=30, validation_alias="LLM_REQUESTS_PER_MINUTE")
    llm_requests_per_hour: Optional[int] = Field(default=None, validation_alias="LLM_REQUESTS_PER_HOUR")
    llm_requests_per_day: Optional[int] = Field(default=None, validation_alias="LLM_REQUESTS_PER_DAY")
    llm_tokens_per_minute: Optional[int] = Field(default=None, validation_alias="LLM_TOKENS_PER_MINUTE")
    rate_limit_retention_minutes: int = Field(default=5, validation_alias="RATE_LIMIT_RETENTION_MINUTES")

    # Worker tick loop
    worker_max_concurrency: int = Field(default=3, validation_alias="WORKER_MAX_CONCURRENCY")
    worker_tick_budget_seconds: float = Field(default=240.0, validation_alias="WORKER_TICK_BUDGET_SECONDS")
    worker_tick_interval_seconds: float = Field(default=1.0, validation_alias="WORKER_TICK_INTERVAL_SECONDS")
    worker_quota_retry_seconds: float = Field(default=2.0, validation_alias="WORKER_QUOTA_RETRY_SECONDS")
    worker_budget_retry_seconds: float = Field(default=0.5, validation_alias="WORKER_BUDGET_RETRY_SECONDS")
    worker_rescue_delay_seconds: float = Field(default=0.0, validation_alias="WORKER_RESCUE_DELAY_SECONDS")
    worker_rescue_limit: int = Field(default=3, validation_alias="WORKER_RESCUE_LIMIT")
    worker_rescue_cooldown_seconds: float = Field(default=60.0, validation_alias="WORKER_RESCUE_COOLDOWN_SECONDS")

    # Task queue
    task_max_attempts: int = Field(default=3, validation_alias="TASK_MAX_ATTEMPTS")
    per_owner_max_running: int = Field(default=20, validation_alias="PER_OWNER_MAX_RUNNING")
    per_owner_max_in_batch: int = Field(default=3, validation_alias="PER_OWNER_MAX_IN_BATCH")
    task_retention_hours: int = Field(default=72, validation_alias="TASK_RETENTION_HOURS")
    report_write_attempts: int = Field(default=3, validation_alias="REPORT_WRITE_ATTEMPTS")

    # Notifications
    relevance_threshold: int = Field(default=50, validation_alias="RELEVANCE_THRESHOLD")
    email_api_url: str = Field(
        default="https://send.api.sendamatic.net/send", validation_alias="EMAIL_API_URL"
    )
    email_api_key: Optional[str] = Field(default=None, validation_alias="EMAIL_API_KEY")
    email_from: str = Field(
        default="GitHub Issue Watcher <notifications@giw.web.id>", validation_alias="EMAIL_FROM"
    )
    email_max_attempts: int = Field(default=2, validation_alias="EMAIL_MAX_ATTEMPTS")
    email_timeout_seconds: float = Field(default=30.0, validation_alias="EMAIL_TIMEOUT_SECONDS")

    # CORS
    cors_allowed_origins: str = Field(default="http://localhost:5173", validation_alias="CORS_ALLOWED_ORIGINS")

    # Celery
    celery_broker_url: str = Field(default="redis://localhost:6379/1", validation_alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://localhost:6379/2", validation_alias="CELERY_RESULT_BACKEND")

    # Scheduler (Celery beat)
    enable_scheduler: bool = Field(default=False, validation_alias="ENABLE_SCHEDULER")

    @field_validator("worker_max_concurrency", "task_max_attempts", "report_write_attempts", "email_max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Counts that bound loops must allow at least one iteration."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("github_page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """GitHub GraphQL connections return at most 100 nodes per request."""
        if not 1 <= v <= 100:
            raise ValueError("GITHUB_PAGE_SIZE must be between 1 and 100")
        return v

    @property
    def lock_ttl_seconds(self) -> float:
        """Lease for the worker lock; must outlive the slowest possible tick."""
        return self.worker_tick_budget_seconds + self.llm_timeout_seconds + 30.0

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    def validate_production_config(self) -> tuple[List[str], List[str]]:
        """
        Validate configuration for production deployment.

        Returns:
            Tuple of (errors, warnings) - errors are fatal, warnings are advisory
        """
        errors = []
        warnings = []

        if not self.github_token:
            errors.append("GITHUB_TOKEN is required for GitHub API access")
        if not self.llm_api_key:
            errors.append("LLM_API_KEY is required for issue analysis")
        if not self.email_api_key:
            errors.append("EMAIL_API_KEY is required for report emails")

        if self.database_url.startswith("sqlite"):
            warnings.append(
                "DATABASE_URL points at SQLite - concurrent workers should use PostgreSQL"
            )
        if self.per_owner_max_running >= 1_000_000:
            warnings.append("PER_OWNER_MAX_RUNNING is effectively unlimited - queue fairness disabled")

        return errors, warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


__all__ = ["Settings", "get_settings"]
