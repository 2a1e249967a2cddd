"""
Runtime Wiring for Daily Ops

This module ties the components together and owns their lifecycle:

1. start():  configure logging → load the data file → start the session sweep
2. dashboard_for(token): authenticate → owner-filtered snapshot → aggregate
3. stop():   stop the sweep → drain pending writes → stop the writer

DESIGN DECISION: Components are built once per process and shared by
reference. There is no module-level mutable state; tests build as many
runtimes as they like, each over its own data file.
"""

import time
from datetime import date, datetime, timezone
from typing import Callable, Optional

import structlog

from daily_ops.aggregation import Dashboard, build_dashboard
from daily_ops.audit import AuditLogger, configure_logging
from daily_ops.config import Settings, get_settings
from daily_ops.queries import QueryExecutor
from daily_ops.services.accounts import AccountService
from daily_ops.services.sessions import SessionManager
from daily_ops.services.storage import StorageEngine


logger = structlog.get_logger(__name__)


class DailyOpsRuntime:
    """
    Owns the storage engine, session manager and account service.

    Args:
        settings: Application settings (get_settings() when omitted)
        clock: Epoch-seconds clock shared by sessions and "today"
        configure_logs: Configure structlog on start()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        configure_logs: bool = True,
    ):
        self.settings = settings or get_settings()
        self._clock = clock
        self._configure_logs = configure_logs
        self._started = False

        self.audit = AuditLogger()
        self.storage = StorageEngine.from_settings(self.settings, audit=self.audit)
        self.sessions = SessionManager.from_settings(self.settings, clock=clock, audit=self.audit)
        self.accounts = AccountService(
            storage=self.storage,
            sessions=self.sessions,
            setup_token=self.settings.setup_token,
            allow_registration=self.settings.allow_registration,
            audit=self.audit,
        )

    @property
    def started(self) -> bool:
        return self._started

    def today(self) -> date:
        """Current calendar date in UTC."""
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()

    async def start(self) -> None:
        """
        Bring the runtime up.

        Raises:
            DecryptionError: The data file cannot be decrypted with the
                configured secret. Nothing is started in that case.
        """
        if self._started:
            return
        if self._configure_logs:
            configure_logging(self.settings.log_level, json=self.settings.log_json)

        await self.storage.init()
        self.sessions.start_cleanup()
        self._started = True
        logger.info(
            "runtime_started",
            data_path=str(self.storage.path),
            encrypted=self.storage.encrypted,
            needs_setup=self.accounts.needs_setup,
        )

    async def stop(self) -> None:
        """Stop the sweep, then flush and close storage."""
        if not self._started:
            return
        await self.sessions.stop_cleanup()
        await self.storage.close()
        self._started = False
        logger.info("runtime_stopped")

    async def __aenter__(self) -> "DailyOpsRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def dashboard_for(self, token: Optional[str], today: Optional[date] = None) -> Dashboard:
        """
        Dashboard for the user behind ``token``.

        Raises:
            AuthenticationError: Token is missing, unknown or expired
        """
        user = self.accounts.require_user(token)
        snapshot = self.storage.snapshot().for_owner(user.id)
        return build_dashboard(snapshot, today or self.today())

    def queries_for(self, token: Optional[str]) -> QueryExecutor:
        """
        Collection filters scoped to the user behind ``token``.

        Raises:
            AuthenticationError: Token is missing, unknown or expired
        """
        user = self.accounts.require_user(token)
        return QueryExecutor(self.storage.snapshot(), owner_id=user.id)
