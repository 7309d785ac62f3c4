"""Configuration module using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///data/tripweaver.db"
    scheduler_database_url: str = "sqlite:///data/scheduler.db"

    # Scheduler
    scheduler_timezone: str = "UTC"
    scheduler_max_workers: int = 2
    pruning_interval_minutes: int = 1440  # 24 hours
    usage_retention_days: int = 90
    record_retention_days: int = 365

    # Providers (OpenAI-compatible chat completion endpoints)
    creative_base_url: str = "https://api.openai.com/v1"
    creative_model: str = "gpt-4o-2024-08-06"
    creative_api_key: str | None = None
    validator_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    validator_model: str = "gemini-2.0-flash"
    validator_api_key: str | None = None
    supervisor_base_url: str = "https://api.anthropic.com/v1"
    supervisor_model: str = "claude-sonnet-4-20250514"
    supervisor_api_key: str | None = None
    http_timeout_connect: float = 10.0

    # Orchestration timeouts (seconds)
    phase1_timeout_seconds: float = 45.0
    phase2_timeout_seconds: float = 30.0
    validator_grace_seconds: float = 2.0
    max_request_duration_seconds: float = 120.0
    quota_timeout_seconds: float = 5.0

    # Retries and circuit breakers
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    circuit_failure_threshold: int = 5
    circuit_reset_seconds: float = 60.0
    circuit_half_open_requests: int = 1

    # Progress stream
    stream_timeout_seconds: float = 300.0  # 5 minutes
    stream_heartbeat_seconds: float = 30.0

    # Burst rate limiting
    rate_limit_algorithm: str = "fixed_window"  # "fixed_window" or "sliding_window"
    rate_limit_window_ms: int = 60_000
    rate_limit_max_requests: int = 10

    # Feature flags (supervisory QA per tier)
    enable_multi_llm: bool = False
    multi_llm_free_tier: bool = False
    multi_llm_pro_tier: bool = False
    multi_llm_premium_tier: bool = False

    # Quota store: "memory", "redis" or "sql"
    quota_backend: str = "sql"

    # Identity and tiers
    api_key: str | None = None  # Optional bearer key in front of the API
    user_id_header: str = "X-User-Id"
    user_tiers: dict[str, str] = {}  # user_id -> "free" | "pro" | "premium"

    # Post-generation hooks
    reward_webhook_url: str | None = None

    # Logging
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Redis / generation cache
    redis_url: str | None = None  # e.g. redis://localhost:6379/0
    redis_ttl_seconds: int = 3600
    redis_prefix: str = "tripweaver:"
    cache_backend: str = "memory"  # "memory" or "redis"
    cache_max_entries: int = 1000

    @property
    def data_dir(self) -> Path:
        """Get the data directory path."""
        if self.database_url.startswith("sqlite:///"):
            db_path = Path(self.database_url.replace("sqlite:///", ""))
            return db_path.parent
        return Path("data")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
