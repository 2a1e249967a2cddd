"""
Collection Filters

DESIGN DECISION: Filtering is DETERMINISTIC and read-only.
Each query is a small typed model; the executor runs it against a store
snapshot and returns copies in a fixed order. Nothing here can change
stored data.

The owner filter is always applied first, so a query can never see
another user's records.
"""

from datetime import date, datetime, timezone
from typing import Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from daily_ops.models.records import (
    CalendarDate,
    Idea,
    InboxEntry,
    ProfitEntry,
    Review,
    Task,
    TaskStatus,
)
from daily_ops.models.store import StoreSnapshot


R = TypeVar("R")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class QueryExecutionError(Exception):
    """A query that cannot be run (for example an inverted date range)."""
    pass


class _Query(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class TaskQuery(_Query):
    """
    Task filters. All are optional and combine with AND.

    ``date`` matches the due date exactly. ``date_from`` / ``date_to`` bound
    the due date inclusively but let undated tasks through.
    """

    status: Optional[Union[TaskStatus, str]] = Field(default=None, union_mode="left_to_right")
    date: Optional[CalendarDate] = None
    date_from: Optional[CalendarDate] = Field(default=None, alias="from")
    date_to: Optional[CalendarDate] = Field(default=None, alias="to")


class ProfitQuery(_Query):
    """Profit filters; entries without a date never match a range."""

    start: Optional[CalendarDate] = None
    end: Optional[CalendarDate] = None
    chain: Optional[str] = None


class ReviewQuery(_Query):
    date: Optional[CalendarDate] = None


class QueryResult(BaseModel, Generic[R]):
    """Records matching a query, already sorted."""

    results: list[R] = Field(default_factory=list)
    result_count: int = 0
    query_description: str = ""

    @model_validator(mode="after")
    def _count(self) -> "QueryResult[R]":
        self.result_count = len(self.results)
        return self

    @property
    def data_found(self) -> bool:
        return self.result_count > 0


def _check_range(low: Optional[date], high: Optional[date]) -> None:
    if low is not None and high is not None and low > high:
        raise QueryExecutionError(
            f"Start of range ({low.isoformat()}) is after its end ({high.isoformat()})"
        )


def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class QueryExecutor:
    """
    Runs collection filters against one snapshot.

    GUARANTEES:
    - Only returns records owned by ``owner_id``
    - Returns copies; the snapshot is never modified
    - Same snapshot and query always give the same order
    """

    def __init__(self, snapshot: StoreSnapshot, owner_id: str):
        self._snapshot = snapshot
        self._owner_id = owner_id

    def _owned(self, records: list[R]) -> list[R]:
        return [r.model_copy(deep=True) for r in records if r.owner_id == self._owner_id]

    def tasks(self, query: Optional[TaskQuery] = None) -> QueryResult[Task]:
        """Tasks by due date (undated last), then by creation time."""
        query = query or TaskQuery()
        _check_range(query.date_from, query.date_to)

        result = self._owned(self._snapshot.tasks)
        if query.status is not None:
            result = [t for t in result if t.status == query.status]
        if query.date is not None:
            result = [t for t in result if t.due_date == query.date]
        if query.date_from is not None:
            result = [t for t in result if t.due_date is None or t.due_date >= query.date_from]
        if query.date_to is not None:
            result = [t for t in result if t.due_date is None or t.due_date <= query.date_to]

        result.sort(
            key=lambda t: (
                t.due_date is None,
                t.due_date or date.max,
                _aware(t.created_at),
                t.id,
            )
        )

        desc_parts = ["Listing tasks"]
        if query.status is not None:
            status = query.status.value if isinstance(query.status, TaskStatus) else query.status
            desc_parts.append(f"status: {status}")
        if query.date is not None:
            desc_parts.append(self._date_range_str(query.date, query.date))
        elif query.date_from or query.date_to:
            desc_parts.append(self._date_range_str(query.date_from, query.date_to))

        return QueryResult[Task](results=result, query_description=" | ".join(desc_parts))

    def profits(self, query: Optional[ProfitQuery] = None) -> QueryResult[ProfitEntry]:
        """Profit entries, most recent date first (undated last)."""
        query = query or ProfitQuery()
        _check_range(query.start, query.end)

        result = self._owned(self._snapshot.profits)
        if query.start is not None:
            result = [p for p in result if p.date is not None and p.date >= query.start]
        if query.end is not None:
            result = [p for p in result if p.date is not None and p.date <= query.end]
        if query.chain:
            result = [p for p in result if p.chain == query.chain]

        # Stable sort keeps insertion order within a day.
        result.sort(key=lambda p: p.date or date.min, reverse=True)

        desc_parts = ["Listing profits"]
        if query.chain:
            desc_parts.append(f"chain: {query.chain}")
        if query.start or query.end:
            desc_parts.append(self._date_range_str(query.start, query.end))

        return QueryResult[ProfitEntry](results=result, query_description=" | ".join(desc_parts))

    def reviews(self, query: Optional[ReviewQuery] = None) -> QueryResult[Review]:
        """Reviews, most recent first."""
        query = query or ReviewQuery()

        result = self._owned(self._snapshot.reviews)
        if query.date is not None:
            result = [r for r in result if r.date == query.date]
        result.sort(key=lambda r: r.date, reverse=True)

        desc = "Listing reviews"
        if query.date is not None:
            desc += " | " + self._date_range_str(query.date, query.date)
        return QueryResult[Review](results=result, query_description=desc)

    def ideas(self) -> QueryResult[Idea]:
        """Ideas, most recently updated first."""
        result = self._owned(self._snapshot.ideas)
        result.sort(key=lambda i: _aware(i.updated_at or i.created_at), reverse=True)
        return QueryResult[Idea](results=result, query_description="Listing ideas")

    def inbox(self) -> QueryResult[InboxEntry]:
        """Inbox entries, newest first."""
        result = self._owned(self._snapshot.inbox)
        result.sort(key=lambda e: _aware(e.created_at), reverse=True)
        return QueryResult[InboxEntry](results=result, query_description="Listing inbox")

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return ""
