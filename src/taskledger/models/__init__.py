"""Task Ledger data models."""

from taskledger.models.enums import (
    LedgerOperation,
    TaskActionType,
    TaskLedgerCategory,
    TaskLedgerStatus,
    TaskLedgerType,
)
from taskledger.models.entry import (
    EXECUTOR_NOOP_STATES,
    OPERATION_SOURCES,
    VALID_TRANSITIONS,
    CreateTaskOptions,
    ExecuteTaskResult,
    TaskLedgerEntry,
    TaskLedgerJob,
    TaskStats,
    allowed_sources,
    is_valid_transition,
)

__all__ = [
    "EXECUTOR_NOOP_STATES",
    "OPERATION_SOURCES",
    "VALID_TRANSITIONS",
    "CreateTaskOptions",
    "ExecuteTaskResult",
    "LedgerOperation",
    "TaskActionType",
    "TaskLedgerCategory",
    "TaskLedgerEntry",
    "TaskLedgerJob",
    "TaskLedgerStatus",
    "TaskLedgerType",
    "TaskStats",
    "allowed_sources",
    "is_valid_transition",
]
