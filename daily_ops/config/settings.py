"""
Configuration Management for Daily Ops

Uses pydantic-settings for type-safe configuration from environment variables
and an optional .env file next to the working directory.

DESIGN DECISION: All configuration is centralized here and read once at
startup. Components receive a Settings instance instead of reading the
environment themselves, so tests can build isolated instances freely.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SESSION_LIFETIME_MS = 1000 * 60 * 60 * 24 * 7  # 7 days


class Settings(BaseSettings):
    """
    Application settings.

    Environment variable names match the field names in upper case
    (PORT, APP_SECRET, SETUP_TOKEN, SESSION_LIFETIME_MS, DATA_FILE, ...).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Network
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port the (external) HTTP layer listens on",
    )
    cookie_secure: bool = Field(
        default=False,
        description="Mark session cookies as Secure",
    )

    # Secrets
    app_secret: Optional[str] = Field(
        default=None,
        description="Secret used to encrypt the data file. Plain JSON when unset.",
    )
    setup_token: Optional[str] = Field(
        default=None,
        description="One-time token required to create the first account",
    )
    allow_registration: bool = Field(
        default=False,
        description="Allow accounts beyond the first one to be created",
    )

    # Sessions
    session_lifetime_ms: int = Field(
        default=DEFAULT_SESSION_LIFETIME_MS,
        gt=0,
        description="Lifetime of a session in milliseconds",
    )
    session_cleanup_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="How often expired sessions are swept from memory",
    )

    # Storage
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the data file",
    )
    data_file: str = Field(
        default="store.json",
        min_length=1,
        description="Name (or absolute path) of the data file",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum log level",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines (console renderer otherwise)",
    )

    @field_validator("app_secret", "setup_token", mode="before")
    @classmethod
    def empty_string_is_unset(cls, v: Optional[str]) -> Optional[str]:
        """An empty variable (APP_SECRET=) means "not configured"."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def data_path(self) -> Path:
        """Full path of the data file."""
        return self.data_dir / self.data_file

    @property
    def encryption_enabled(self) -> bool:
        return self.app_secret is not None


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
