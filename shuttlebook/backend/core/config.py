"""Application configuration using pydantic-settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = "sqlite:///./data/shuttlebook.db"

    # Scheduling
    slot_minutes: int = 60
    max_slot_shift_minutes: int = 240

    # Holds
    hold_ttl_minutes: int = 30

    # Allocation concurrency
    allocation_max_retries: int = 3
    allocation_retry_backoff_ms: int = 25
    lock_timeout_seconds: float = 10.0
    sqlite_busy_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000


settings = Settings()
