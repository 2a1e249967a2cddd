"""
Audit Logger

Every mutation of the store and every session event is logged as one
structured event, with the collection, the record id and (where one
exists) the owner. Record contents and credentials are never logged.

Logging goes through structlog on top of the standard library logging
module. configure_logging() is called once at startup by the runtime;
until then structlog's defaults apply (which is what tests see).
"""

import logging
import sys
from typing import Any, Optional

import structlog


def configure_logging(level: str = "INFO", json: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name (DEBUG, INFO, ...)
        json: Render JSON lines when True, human readable output otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    renderer: Any
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging for store and session events.

    Events:
        record_added / record_updated / record_removed / review_upserted
        session_created / session_destroyed / sessions_swept
        login_failed / user_registered
    """

    def __init__(self, name: str = "daily_ops.audit"):
        self._logger = structlog.get_logger(name)

    def _record_event(
        self,
        event: str,
        collection: str,
        record_id: Optional[str],
        owner_id: Optional[str],
        **details: Any,
    ) -> None:
        self._logger.info(
            event,
            collection=collection,
            record_id=record_id,
            owner_id=owner_id,
            **details,
        )

    def record_added(self, collection: str, record_id: Optional[str], owner_id: Optional[str]) -> None:
        self._record_event("record_added", collection, record_id, owner_id)

    def record_updated(
        self,
        collection: str,
        record_id: str,
        owner_id: Optional[str],
        fields: list[str],
    ) -> None:
        self._record_event("record_updated", collection, record_id, owner_id, fields=fields)

    def record_removed(self, collection: str, record_id: str, owner_id: Optional[str]) -> None:
        self._record_event("record_removed", collection, record_id, owner_id)

    def review_upserted(self, owner_id: Optional[str], review_date: str, created: bool) -> None:
        self._record_event(
            "review_upserted",
            "reviews",
            None,
            owner_id,
            date=review_date,
            created=created,
        )

    def session_created(self, user_id: str) -> None:
        # Tokens are bearer credentials; only the user id is logged.
        self._logger.info("session_created", user_id=user_id)

    def session_destroyed(self, user_id: Optional[str]) -> None:
        self._logger.info("session_destroyed", user_id=user_id)

    def sessions_swept(self, evicted: int, remaining: int) -> None:
        self._logger.debug("sessions_swept", evicted=evicted, remaining=remaining)

    def user_registered(self, user_id: str, username: str) -> None:
        self._logger.info("user_registered", user_id=user_id, username=username)

    def login_failed(self, username: str) -> None:
        self._logger.warning("login_failed", username=username)
