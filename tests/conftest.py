"""
Shared fixtures.

Every test gets its own data directory under tmp_path; nothing touches
the real data/ directory or the environment.
"""

from datetime import date, datetime, timezone

import pytest

from daily_ops.config import Settings
from daily_ops.services.storage import StorageEngine


TEST_SECRET = "correct horse battery staple"

# A fixed "today" for aggregation and query tests
TODAY = date(2024, 3, 15)


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def at(day: int, hour: int = 9, minute: int = 0) -> datetime:
    """A UTC timestamp in March 2024."""
    return datetime(2024, 3, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def data_path(tmp_path):
    return tmp_path / "data" / "store.json"


@pytest.fixture
def make_engine(data_path):
    """Factory for engines over the test's data file."""

    def _make(secret=None, path=None):
        return StorageEngine(path or data_path, secret=secret)

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        data_file="store.json",
        app_secret=None,
        setup_token="let-me-in",
        allow_registration=False,
        session_lifetime_ms=60_000,
        session_cleanup_interval_seconds=3600,
        log_json=False,
    )
