"""Collection filter package."""

from daily_ops.queries.executor import (
    ProfitQuery,
    QueryExecutionError,
    QueryExecutor,
    QueryResult,
    ReviewQuery,
    TaskQuery,
)

__all__ = [
    "ProfitQuery",
    "QueryExecutionError",
    "QueryExecutor",
    "QueryResult",
    "ReviewQuery",
    "TaskQuery",
]
