from daily_ops.aggregation.dashboard import (
    FOCUS_LIMIT,
    Dashboard,
    IdeaSummary,
    InboxSummary,
    ProfitMetrics,
    ProfitSummary,
    TaskBuckets,
    TaskSummary,
    build_dashboard,
    calculate_profit_metrics,
    categorize_tasks,
    get_top_priority_tasks,
)

__all__ = [
    "FOCUS_LIMIT",
    "Dashboard",
    "IdeaSummary",
    "InboxSummary",
    "ProfitMetrics",
    "ProfitSummary",
    "TaskBuckets",
    "TaskSummary",
    "build_dashboard",
    "calculate_profit_metrics",
    "categorize_tasks",
    "get_top_priority_tasks",
]
