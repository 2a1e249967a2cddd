"""Audit logging package."""

from daily_ops.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
