"""
Session Manager

Opaque bearer tokens with a fixed lifetime, kept in memory only.

A session is Active from creation until expiresAt or destroy_session(),
then Gone: lookups return None and there is no way back. Lookups refresh
updatedAt but never extend expiresAt.

The table is guarded by a lock so lookups from worker threads and the
periodic sweep cannot corrupt it. The sweep holds the lock only while
it filters the table.
"""

import asyncio
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from daily_ops.audit import AuditLogger
from daily_ops.config import Settings
from daily_ops.config.settings import DEFAULT_SESSION_LIFETIME_MS
from daily_ops.models.session import Session


logger = structlog.get_logger(__name__)

TOKEN_BYTES = 36  # 288 bits of entropy


class SessionManager:
    """
    Issues, validates and expires session tokens.

    Args:
        lifetime_ms: Session lifetime in milliseconds
        clock: Returns the current time as epoch seconds (time.time by default)
        cleanup_interval: Seconds between background sweeps
    """

    def __init__(
        self,
        lifetime_ms: int = DEFAULT_SESSION_LIFETIME_MS,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = 3600.0,
        audit: Optional[AuditLogger] = None,
    ):
        if lifetime_ms <= 0:
            raise ValueError("lifetime_ms must be positive")
        self._lifetime_ms = lifetime_ms
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._audit = audit or AuditLogger()
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Callable[[], float] = time.time,
        audit: Optional[AuditLogger] = None,
    ) -> "SessionManager":
        return cls(
            lifetime_ms=settings.session_lifetime_ms,
            clock=clock,
            cleanup_interval=settings.session_cleanup_interval_seconds,
            audit=audit,
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _as_datetime(ms: int) -> datetime:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create_session(self, user_id: str) -> Session:
        """Issue a new token for ``user_id``."""
        if not user_id:
            raise ValueError("user_id is required")

        now = self._now_ms()
        session = Session(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            user_id=user_id,
            created_at=self._as_datetime(now),
            updated_at=self._as_datetime(now),
            expires_at=now + self._lifetime_ms,
        )
        with self._lock:
            self._sessions[session.token] = session
        self._audit.session_created(user_id)
        return session.model_copy()

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        """
        Look up a token.

        Returns None for an empty, unknown or expired token (expired
        entries are evicted). Otherwise refreshes updatedAt and returns
        a copy.
        """
        if not token:
            return None

        now = self._now_ms()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.is_expired(now):
                del self._sessions[token]
                return None
            session.updated_at = self._as_datetime(now)
            return session.model_copy()

    def destroy_session(self, token: Optional[str]) -> None:
        """Remove a token. Unknown tokens are ignored."""
        if not token:
            return
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is not None:
            self._audit.session_destroyed(session.user_id)

    def cleanup_expired(self) -> int:
        """
        Evict every expired session.

        Returns:
            Number of sessions evicted
        """
        now = self._now_ms()
        with self._lock:
            expired = [token for token, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]
            remaining = len(self._sessions)
        self._audit.sessions_swept(len(expired), remaining)
        return len(expired)

    # ---- background sweep ----

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                self.cleanup_expired()
            except Exception:
                logger.exception("session_sweep_failed")

    def start_cleanup(self) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._cleanup_loop(),
                name="daily-ops-session-sweep",
            )
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
