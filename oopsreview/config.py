"""OopsReview configuration system using Pydantic Settings."""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "CHANGE_ME_IN_PRODUCTION"


class ReviewCenterConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "OopsReview Center"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite+aiosqlite:///./oopsreview.db"

    # Sessions
    secret_key: str = DEFAULT_SECRET_KEY
    jwt_algorithm: str = "HS256"
    session_lifetime_minutes: int = 480  # 8 hours, sliding
    session_cookie_name: str = "oopsreview_session"

    # Credentials
    password_iterations: int = 600_000
    login_max_attempts: int = 5
    login_window_seconds: int = 300
    trust_forwarded_for: bool = False  # only behind a proxy that sets X-Forwarded-For
    seed_admin_password: Optional[str] = None

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("password_iterations")
    @classmethod
    def validate_password_iterations(cls, v: int) -> int:
        if v < 100_000:
            raise ValueError("password_iterations must be at least 100000")
        return v

    @field_validator("session_lifetime_minutes")
    @classmethod
    def validate_session_lifetime(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("session_lifetime_minutes must be positive")
        return v


def get_config() -> ReviewCenterConfig:
    """Factory function to create config instance."""
    return ReviewCenterConfig()
