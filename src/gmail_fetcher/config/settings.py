"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class GmailFetcherSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="GMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OAuth credentials
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")
    user_id: str = "me"

    # Scheduler: normal mode
    page_size: int = 100
    detail_concurrency: int = 10
    inter_batch_delay_seconds: float = 1.0
    inter_page_delay_seconds: float = 2.0
    max_total_messages: int = 500

    # Scheduler: heavy (degraded) mode
    heavy_page_size: int = 50
    heavy_detail_concurrency: int = 1
    heavy_inter_batch_delay_seconds: float = 3.0
    heavy_inter_page_delay_seconds: float = 5.0
    heavy_max_total_messages: int = 150

    # Circuit breaker
    failure_threshold: int = 3
    transient_failure_threshold: int = 6
    heavy_recovery_successes: int = 10
    min_cooldown_seconds: float = 30.0

    # Retry & backoff
    initial_backoff_seconds: float = 2.0
    max_backoff_seconds: float = 10.0
    transient_initial_backoff_seconds: float = 1.0
    transient_max_backoff_seconds: float = 5.0
    max_list_attempts: int = 5
    max_transient_attempts: int = 3
    max_detail_attempts: int = 2

    # Deadlines
    item_timeout_seconds: float = 30.0
    session_timeout_seconds: float = 420.0

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create the credentials directory if it doesn't exist."""
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
