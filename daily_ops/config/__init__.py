"""Configuration package."""

from daily_ops.config.settings import (
    DEFAULT_SESSION_LIFETIME_MS,
    Settings,
    get_settings,
)

__all__ = [
    "DEFAULT_SESSION_LIFETIME_MS",
    "Settings",
    "get_settings",
]
