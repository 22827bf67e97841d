"""Task ledger entry model - the durable record of one requested action."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from taskledger.models.enums import (
    LedgerOperation,
    TaskLedgerCategory,
    TaskLedgerStatus,
    TaskLedgerType,
)

# Statuses from which each operation may start.
OPERATION_SOURCES: dict[LedgerOperation, frozenset[TaskLedgerStatus]] = {
    LedgerOperation.APPROVE: frozenset({TaskLedgerStatus.PENDING, TaskLedgerStatus.SCHEDULED}),
    LedgerOperation.DECLINE: frozenset({TaskLedgerStatus.PENDING, TaskLedgerStatus.SCHEDULED}),
    LedgerOperation.EXECUTE: frozenset(
        {TaskLedgerStatus.PENDING, TaskLedgerStatus.SCHEDULED, TaskLedgerStatus.IN_PROGRESS}
    ),
    LedgerOperation.COMPLETE: frozenset({TaskLedgerStatus.PENDING, TaskLedgerStatus.IN_PROGRESS}),
    LedgerOperation.UNDO: frozenset({TaskLedgerStatus.COMPLETED}),
    LedgerOperation.CANCEL_ENTITY: frozenset({TaskLedgerStatus.PENDING, TaskLedgerStatus.SCHEDULED}),
}

VALID_TRANSITIONS: dict[TaskLedgerStatus, frozenset[TaskLedgerStatus]] = {
    TaskLedgerStatus.PENDING: frozenset(
        {TaskLedgerStatus.IN_PROGRESS, TaskLedgerStatus.CANCELLED, TaskLedgerStatus.COMPLETED}
    ),
    TaskLedgerStatus.SCHEDULED: frozenset(
        {TaskLedgerStatus.IN_PROGRESS, TaskLedgerStatus.CANCELLED}
    ),
    TaskLedgerStatus.IN_PROGRESS: frozenset(
        {
            TaskLedgerStatus.IN_PROGRESS,  # Redelivered or approved job picked up
            TaskLedgerStatus.COMPLETED,
            TaskLedgerStatus.SCHEDULED,  # Retry with backoff
            TaskLedgerStatus.FAILED,
        }
    ),
    TaskLedgerStatus.COMPLETED: frozenset({TaskLedgerStatus.UNDONE}),
    TaskLedgerStatus.FAILED: frozenset(),
    TaskLedgerStatus.CANCELLED: frozenset(),
    TaskLedgerStatus.UNDONE: frozenset(),
}

# Statuses the executor treats as already handled.
EXECUTOR_NOOP_STATES: frozenset[TaskLedgerStatus] = frozenset(
    {
        TaskLedgerStatus.COMPLETED,
        TaskLedgerStatus.CANCELLED,
        TaskLedgerStatus.UNDONE,
        TaskLedgerStatus.FAILED,
    }
)


def is_valid_transition(source: TaskLedgerStatus, target: TaskLedgerStatus) -> bool:
    return target in VALID_TRANSITIONS.get(source, frozenset())


def allowed_sources(operation: LedgerOperation) -> frozenset[TaskLedgerStatus]:
    """Return the statuses from which ``operation`` is legal."""
    return OPERATION_SOURCES[operation]


class CreateTaskOptions(BaseModel):
    """Admission payload for a new ledger entry."""

    tenant_id: str
    type: TaskLedgerType
    category: TaskLedgerCategory
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None
    priority: Optional[int] = Field(None, ge=1, le=100)

    # Weak back-reference to the domain object this entry concerns
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None

    action_type: Optional[str] = None
    action_endpoint: Optional[str] = None
    payload: Optional[dict[str, Any]] = None

    scheduled_for: Optional[datetime] = None

    undo_window_mins: Optional[int] = Field(None, ge=1)
    undo_endpoint: Optional[str] = None
    undo_payload: Optional[dict[str, Any]] = None

    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    ai_reasoning: Optional[str] = None
    ai_model: Optional[str] = None

    idempotency_key: Optional[str] = Field(None, max_length=255)
    trace_id: Optional[str] = None
    max_retries: Optional[int] = Field(None, ge=0)


class TaskLedgerEntry(BaseModel):
    """Durable record of one requested action and its lifecycle."""

    # Identity
    id: str
    tenant_id: str

    # Classification
    type: TaskLedgerType
    category: TaskLedgerCategory
    priority: int = 50

    # Presentation
    title: str
    description: Optional[str] = None
    icon: Optional[str] = None

    # Target reference
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None

    # Execution
    action_type: Optional[str] = None
    action_endpoint: Optional[str] = None
    payload: Optional[Any] = None  # stored JSON; admission only accepts objects

    # Dedup / tracing
    idempotency_key: str
    trace_id: str

    # Scheduling
    scheduled_for: Optional[datetime] = None

    # Reversal
    undo_window_mins: Optional[int] = None
    undo_endpoint: Optional[str] = None
    undo_payload: Optional[dict[str, Any]] = None

    # Outcome
    status: TaskLedgerStatus = TaskLedgerStatus.PENDING
    executed_at: Optional[datetime] = None
    executed_by: Optional[str] = None
    undone_at: Optional[datetime] = None
    undone_by: Optional[str] = None
    failure_reason: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    retry_count: int = 0
    max_retries: int = 3

    # Provenance
    ai_confidence: Optional[float] = None
    ai_reasoning: Optional[str] = None
    ai_model: Optional[str] = None

    # Audit
    created_at: datetime
    updated_at: datetime

    def is_terminal(self) -> bool:
        """Check if entry is in a terminal state."""
        return self.status.is_terminal()

    def allows(self, operation: LedgerOperation) -> bool:
        """Check if ``operation`` may start from the current status."""
        return self.status in OPERATION_SOURCES[operation]


class TaskStats(BaseModel):
    """Dashboard counters for one tenant."""

    pending: int
    approvals: int
    completed_today: int
    failed_today: int


class ExecuteTaskResult(BaseModel):
    """Outcome of one executor attempt."""

    success: bool
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class TaskLedgerJob(BaseModel):
    """Data carried by a queued execution job."""

    task_id: str
    tenant_id: str
    approved_by: Optional[str] = None
