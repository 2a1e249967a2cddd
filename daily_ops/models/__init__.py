"""
Data Models Package

This package contains all Pydantic models used by Daily Ops.
Every record read from or written to the data file conforms to these schemas.
"""

from daily_ops.models.records import (
    Idea,
    IdeaPatch,
    IdeaStatus,
    InboxEntry,
    PasswordCredential,
    ProfitEntry,
    ProfitPatch,
    Review,
    Task,
    TaskPatch,
    TaskPriority,
    TaskStatus,
    User,
    UserPatch,
)
from daily_ops.models.session import Session
from daily_ops.models.store import COLLECTION_NAMES, StoreData, StoreSnapshot

__all__ = [
    # Records
    "Idea",
    "InboxEntry",
    "PasswordCredential",
    "ProfitEntry",
    "Review",
    "Task",
    "User",
    # Patches
    "IdeaPatch",
    "ProfitPatch",
    "TaskPatch",
    "UserPatch",
    # Enums
    "IdeaStatus",
    "TaskPriority",
    "TaskStatus",
    # Store
    "COLLECTION_NAMES",
    "StoreData",
    "StoreSnapshot",
    # Sessions
    "Session",
]
