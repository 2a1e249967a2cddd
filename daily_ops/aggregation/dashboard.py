"""
Dashboard Aggregation

DESIGN DECISION: Aggregation is a set of pure functions over a snapshot
that has already been restricted to one owner. They never touch storage,
never read the clock (``today`` is always passed in) and never mutate
their inputs, so the same snapshot and the same ``today`` always give the
same result.

Dates are compared at calendar-day granularity only.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from pydantic import BaseModel, Field

from daily_ops.models.records import (
    IdeaStatus,
    ProfitEntry,
    as_utc,
    Task,
    TaskPriority,
    TaskStatus,
)
from daily_ops.models.store import StoreSnapshot


FOCUS_LIMIT = 3

PRIORITY_RANK = {
    TaskPriority.HIGH.value: 3,
    TaskPriority.MEDIUM.value: 2,
    TaskPriority.LOW.value: 1,
}


# =============================================================================
# RESULT MODELS
# =============================================================================

class TaskBuckets(BaseModel):
    """Open tasks grouped by due date relative to today."""

    today_tasks: list[Task] = Field(default_factory=list)
    tomorrow_tasks: list[Task] = Field(default_factory=list)
    overdue: list[Task] = Field(default_factory=list)
    upcoming: list[Task] = Field(
        default_factory=list,
        description="Due after tomorrow, or with no due date",
    )


class ProfitMetrics(BaseModel):
    """Profit totals over windows that end today (inclusive)."""

    today_total: Decimal = Decimal("0")
    seven_day_total: Decimal = Decimal("0")
    thirty_day_total: Decimal = Decimal("0")


class TaskSummary(TaskBuckets):
    total: int = 0
    completed_today: int = 0


class ProfitSummary(ProfitMetrics):
    entries: int = 0


class IdeaSummary(BaseModel):
    total: int = 0
    incubating: int = Field(default=0, description="Ideas that are not archived")


class InboxSummary(BaseModel):
    total: int = 0


class Dashboard(BaseModel):
    """Everything the dashboard view shows for one owner on one day."""

    today: date
    tasks: TaskSummary
    profits: ProfitSummary
    ideas: IdeaSummary
    inbox: InboxSummary
    focus: list[Task] = Field(default_factory=list)


# =============================================================================
# HELPERS
# =============================================================================

def _is_done(task: Task) -> bool:
    return task.status == TaskStatus.DONE


def _priority_rank(priority: Any) -> int:
    value = priority.value if isinstance(priority, TaskPriority) else priority
    return PRIORITY_RANK.get(value, 0)


def _as_decimal(value: Any) -> Decimal:
    """Exact decimal for a money amount; anything unparseable counts as 0."""
    if isinstance(value, bool) or value is None:
        return Decimal("0")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not amount.is_finite():
        return Decimal("0")
    return amount


# =============================================================================
# AGGREGATIONS
# =============================================================================

def categorize_tasks(tasks: Iterable[Task], today: date) -> TaskBuckets:
    """
    Split open tasks into today / tomorrow / overdue / upcoming.

    Done tasks are left out of every bucket. Tasks without a due date are
    upcoming. Input order is kept within each bucket.
    """
    tomorrow = today + timedelta(days=1)
    buckets = TaskBuckets()

    for task in tasks:
        if _is_done(task):
            continue
        due = task.due_date
        if due is None:
            buckets.upcoming.append(task)
        elif due == today:
            buckets.today_tasks.append(task)
        elif due == tomorrow:
            buckets.tomorrow_tasks.append(task)
        elif due < today:
            buckets.overdue.append(task)
        else:
            buckets.upcoming.append(task)

    return buckets


def calculate_profit_metrics(profits: Iterable[ProfitEntry], today: date) -> ProfitMetrics:
    """
    Sum amounts for today, the last 7 days and the last 30 days.

    Windows are inclusive and end today: [today], [today-6, today] and
    [today-29, today]. Entries without a date, or dated after today, are
    not counted.
    """
    seven_start = today - timedelta(days=6)
    thirty_start = today - timedelta(days=29)

    today_total = Decimal("0")
    seven_day_total = Decimal("0")
    thirty_day_total = Decimal("0")

    for entry in profits:
        entry_date = entry.date
        if entry_date is None:
            continue
        amount = _as_decimal(entry.amount)
        if entry_date == today:
            today_total += amount
        if seven_start <= entry_date <= today:
            seven_day_total += amount
        if thirty_start <= entry_date <= today:
            thirty_day_total += amount

    return ProfitMetrics(
        today_total=today_total,
        seven_day_total=seven_day_total,
        thirty_day_total=thirty_day_total,
    )


def _focus_sort_key(task: Task) -> tuple:
    # Dated tasks before undated ones within a priority, so the order is
    # total even when dated and undated tasks are mixed.
    return (
        -_priority_rank(task.priority),
        task.due_date is None,
        task.due_date or date.max,
        as_utc(task.created_at),
        task.id,
    )


def get_top_priority_tasks(tasks: Iterable[Task], limit: int = FOCUS_LIMIT) -> list[Task]:
    """
    The focus list: open tasks ranked by priority, then due date, then age.

    Priority high > medium > low > anything else. Within a priority, tasks
    with a due date come first by ascending due date; the rest by creation
    time. Ties resolve on id.
    """
    open_tasks = [task for task in tasks if not _is_done(task)]
    return sorted(open_tasks, key=_focus_sort_key)[:limit]


def build_dashboard(snapshot: StoreSnapshot, today: date) -> Dashboard:
    """
    Assemble the dashboard for an owner-filtered snapshot.

    Callers restrict the snapshot first (snapshot.for_owner(user_id)).
    """
    tasks = snapshot.tasks
    profits = snapshot.profits
    ideas = snapshot.ideas

    buckets = categorize_tasks(tasks, today)
    metrics = calculate_profit_metrics(profits, today)

    return Dashboard(
        today=today,
        tasks=TaskSummary(
            today_tasks=buckets.today_tasks,
            tomorrow_tasks=buckets.tomorrow_tasks,
            overdue=buckets.overdue,
            upcoming=buckets.upcoming,
            total=len(tasks),
            completed_today=sum(1 for t in tasks if t.due_date == today and _is_done(t)),
        ),
        profits=ProfitSummary(
            **metrics.model_dump(),
            entries=len(profits),
        ),
        ideas=IdeaSummary(
            total=len(ideas),
            incubating=sum(1 for i in ideas if i.status != IdeaStatus.ARCHIVED),
        ),
        inbox=InboxSummary(total=len(snapshot.inbox)),
        focus=get_top_priority_tasks(tasks),
    )
