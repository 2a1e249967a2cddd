"""
Record Models for Daily Ops

These models define the schemas of everything stored in the data file:
users, tasks, ideas, profit entries, inbox notes and daily reviews.

On disk (and on input) fields use camelCase names (ownerId, dueDate,
createdAt...). In Python they are snake_case attributes.

DESIGN DECISION: Every mutable entity has a matching *Patch model whose
fields are all optional. The storage engine only applies the fields that
were explicitly set on a patch (model_dump(exclude_unset=True)), so an
omitted field and an explicit null are different things:

    TaskPatch(due_date=None)  -> clears the due date
    TaskPatch()               -> leaves the due date alone
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


logger = structlog.get_logger(__name__)

# Records have a field called "date"; annotate with this alias inside them.
CalendarDate = date


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """
    A fresh updatedAt value that is strictly later than ``previous``.

    Two updates within the same clock tick still move updatedAt forward.
    """
    now = utc_now()
    if previous is None:
        return now
    previous = as_utc(previous)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def new_id() -> str:
    return str(uuid4())


def normalize_tags(value: Any) -> list[str]:
    """
    Tags are an ordered set of non-empty strings.

    Accepts a list or a comma separated string.
    """
    if value is None:
        return []
    if isinstance(value, str):
        raw = value.split(",")
    elif isinstance(value, (list, tuple)):
        raw = value
    else:
        raise ValueError("tags must be a list of strings or a comma separated string")

    tags: list[str] = []
    for item in raw:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TaskStatus(str, Enum):
    """Task lifecycle status."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"


class TaskPriority(str, Enum):
    """
    Task priority.

    Values outside this set may exist in older data files. They are kept
    as plain strings and rank below LOW.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IdeaStatus(str, Enum):
    INCUBATING = "incubating"
    ACTIVE = "active"
    ARCHIVED = "archived"


# =============================================================================
# BASE MODEL
# =============================================================================

class RecordModel(BaseModel):
    """
    Base for all stored records.

    Unknown fields found in the data file are kept and written back.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="allow",
    )

    @field_validator("created_at", "updated_at", mode="after", check_fields=False)
    @classmethod
    def _timestamps_in_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def to_store_dict(self) -> dict[str, Any]:
        """JSON-compatible dict with on-disk (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)


class PatchModel(BaseModel):
    """
    Base for partial updates.

    Unknown fields are rejected so a typo in a patch fails loudly.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )

    def changes(self) -> dict[str, Any]:
        """Only the fields that were explicitly set, by attribute name."""
        return self.model_dump(exclude_unset=True)


# =============================================================================
# USERS
# =============================================================================

class PasswordCredential(RecordModel):
    """Salted password hash. The plaintext password is never stored."""

    salt: str = Field(..., min_length=1, description="Hex encoded random salt")
    hash: str = Field(..., min_length=1, description="Hex encoded scrypt output")
    version: int = Field(default=1, ge=1, description="Hashing scheme version")


class User(RecordModel):
    """A user account."""

    id: str = Field(default_factory=new_id)
    username: str = Field(..., min_length=1, max_length=64)
    password: PasswordCredential
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_public_dict(self) -> dict[str, Any]:
        """Account data safe to hand to a client (no credential)."""
        data = self.to_store_dict()
        data.pop("password", None)
        return data


class UserPatch(PatchModel):
    username: Optional[str] = Field(default=None, min_length=1, max_length=64)
    password: Optional[PasswordCredential] = None


# =============================================================================
# TASKS
# =============================================================================

def _lenient_minutes(v: Any) -> Optional[int]:
    """
    Parse an estimate in minutes.

    Anything that is not a positive number loads as "no estimate".
    """
    if v is None:
        return None
    if isinstance(v, bool):
        minutes = None
    else:
        try:
            minutes = int(float(str(v).strip()))
        except (TypeError, ValueError, OverflowError):
            minutes = None
    if minutes is None or minutes <= 0:
        logger.warning("estimated_minutes_dropped", raw_minutes=repr(v))
        return None
    return minutes


class Task(RecordModel):
    """
    A to-do item, optionally due on a calendar date.

    Title length is limited on input (TaskPatch), not here, so that stored
    tasks with longer titles still load.
    """

    id: str = Field(default_factory=new_id)
    owner_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str = ""
    due_date: Optional[date] = Field(
        default=None,
        description="Calendar date the task is due (no time of day)",
    )
    status: Union[TaskStatus, str] = Field(
        default=TaskStatus.PENDING,
        union_mode="left_to_right",
    )
    priority: Union[TaskPriority, str] = Field(
        default=TaskPriority.MEDIUM,
        union_mode="left_to_right",
    )
    category: str = "general"
    tags: list[str] = Field(default_factory=list)
    estimated_minutes: Optional[int] = None
    checklist: list[Any] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> list[str]:
        return normalize_tags(v)

    @field_validator("estimated_minutes", mode="before")
    @classmethod
    def _parse_minutes(cls, v: Any) -> Optional[int]:
        return _lenient_minutes(v)

    @field_validator("checklist", mode="before")
    @classmethod
    def _checklist_list(cls, v: Any) -> list[Any]:
        return v if isinstance(v, list) else []

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE


class TaskPatch(PatchModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    due_date: Optional[date] = None
    status: Optional[Union[TaskStatus, str]] = Field(default=None, union_mode="left_to_right")
    priority: Optional[Union[TaskPriority, str]] = Field(default=None, union_mode="left_to_right")
    category: Optional[str] = None
    tags: Optional[list[str]] = None
    estimated_minutes: Optional[int] = Field(default=None, gt=0)
    checklist: Optional[list[Any]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> Optional[list[str]]:
        return None if v is None else normalize_tags(v)


# =============================================================================
# IDEAS
# =============================================================================

class Idea(RecordModel):
    """Something worth thinking about later."""

    id: str = Field(default_factory=new_id)
    owner_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    detail: str = ""
    tags: list[str] = Field(default_factory=list)
    status: Union[IdeaStatus, str] = Field(
        default=IdeaStatus.INCUBATING,
        union_mode="left_to_right",
    )
    impact: Optional[float] = None
    confidence: Optional[float] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> list[str]:
        return normalize_tags(v)


class IdeaPatch(PatchModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    detail: Optional[str] = None
    tags: Optional[list[str]] = None
    status: Optional[Union[IdeaStatus, str]] = Field(default=None, union_mode="left_to_right")
    impact: Optional[float] = None
    confidence: Optional[float] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> Optional[list[str]]:
        return None if v is None else normalize_tags(v)


# =============================================================================
# PROFITS
# =============================================================================

def _lenient_amount(v: Any) -> Decimal:
    """
    Parse a money amount.

    Older data files may hold amounts that are not numbers at all; those
    load as zero instead of making the whole file unreadable.
    """
    if isinstance(v, Decimal):
        return v
    if isinstance(v, bool) or v is None:
        parsed = None
    else:
        try:
            parsed = Decimal(str(v).strip())
        except InvalidOperation:
            parsed = None
    if parsed is None or not parsed.is_finite():
        logger.warning("profit_amount_unparseable", raw_amount=repr(v))
        return Decimal("0")
    return parsed


class ProfitEntry(RecordModel):
    """A realized profit (or loss, when negative) on a given day."""

    id: str = Field(default_factory=new_id)
    owner_id: Optional[str] = None
    date: Optional[CalendarDate] = None
    amount: Decimal = Field(default=Decimal("0"), description="Signed amount")
    currency: str = "USDT"
    market: str = ""
    chain: str = ""
    tx_hash: str = ""
    notes: str = ""
    strategy: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, v: Any) -> Decimal:
        return _lenient_amount(v)


class ProfitPatch(PatchModel):
    date: Optional[CalendarDate] = None
    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=False)
    currency: Optional[str] = None
    market: Optional[str] = None
    chain: Optional[str] = None
    tx_hash: Optional[str] = None
    notes: Optional[str] = None
    strategy: Optional[str] = None


# =============================================================================
# INBOX
# =============================================================================

class InboxEntry(RecordModel):
    """A quick capture. Inbox entries are added and deleted, never edited."""

    id: str = Field(default_factory=new_id)
    owner_id: Optional[str] = None
    content: str = Field(..., min_length=1)
    type: str = "note"
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# REVIEWS
# =============================================================================

class Review(RecordModel):
    """
    End-of-day review.

    Unique per (owner_id, date). Writing a second review for the same day
    merges into the first one.
    """

    owner_id: Optional[str] = None
    date: CalendarDate
    highlight: str = ""
    lessons: str = ""
    blockers: str = ""
    mood: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> tuple[Optional[str], CalendarDate]:
        return (self.owner_id, self.date)
