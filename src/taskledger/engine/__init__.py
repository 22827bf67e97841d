"""Task Ledger engine - admission, lifecycle, execution and state machine."""

from taskledger.engine.core import TaskLedgerEngine
from taskledger.engine.dispatcher import ACTION_EVENTS, ActionDispatcher
from taskledger.engine.executor import TaskExecutor
from taskledger.engine.retry import RetryDecision, RetryPolicy
from taskledger.errors import (
    ActionExecutionError,
    InvalidState,
    QueueError,
    TaskLedgerError,
    TaskNotFound,
    UndoWindowExpired,
)

__all__ = [
    "ACTION_EVENTS",
    "ActionDispatcher",
    "ActionExecutionError",
    "InvalidState",
    "QueueError",
    "RetryDecision",
    "RetryPolicy",
    "TaskExecutor",
    "TaskLedgerEngine",
    "TaskLedgerError",
    "TaskNotFound",
    "UndoWindowExpired",
]
