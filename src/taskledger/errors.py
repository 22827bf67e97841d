"""Task Ledger errors."""

from datetime import datetime
from typing import Iterable


class TaskLedgerError(Exception):
    """Base error for Task Ledger operations."""

    def __init__(self, message: str, code: str = "TASK_LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TaskNotFound(TaskLedgerError):
    """Entry does not exist or belongs to another tenant."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}", "TASK_NOT_FOUND")
        self.task_id = task_id


class InvalidState(TaskLedgerError):
    """Operation is not legal from the entry's current status."""

    def __init__(
        self,
        current_status: str,
        allowed: Iterable[str] = (),
        message: str | None = None,
        code: str = "INVALID_STATE",
    ):
        self.current_status = str(getattr(current_status, "value", current_status))
        self.allowed = sorted(str(getattr(s, "value", s)) for s in allowed)
        if message is None:
            message = (
                f"Task is {self.current_status}, expected one of: "
                f"{', '.join(self.allowed) or 'none'}"
            )
        super().__init__(message, code)


class UndoWindowExpired(InvalidState):
    """Undo requested after the entry's undo window closed."""

    def __init__(self, deadline: datetime):
        super().__init__(
            "COMPLETED",
            ["COMPLETED"],
            message=f"Undo window has expired (deadline {deadline.isoformat()})",
            code="UNDO_WINDOW_EXPIRED",
        )
        self.deadline = deadline


class QueueError(TaskLedgerError):
    """Queue backend failed to enqueue or cancel a job."""

    def __init__(self, message: str):
        super().__init__(message, "QUEUE_ERROR")


class ActionExecutionError(TaskLedgerError):
    """Dispatching an action failed."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, "ACTION_EXECUTION_FAILED")
        self.retryable = retryable
