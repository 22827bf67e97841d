"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any

from sqlalchemy import Enum, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from taskledger.db.base import Base
from taskledger.db.types import JSONType, UTCDateTime
from taskledger.models.enums import TaskLedgerCategory, TaskLedgerStatus, TaskLedgerType


class TaskLedgerEntryTable(Base):
    """Task ledger entries - one row per requested action, never deleted."""

    __tablename__ = "task_ledger_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Classification
    type: Mapped[TaskLedgerType] = mapped_column(
        Enum(TaskLedgerType, name="taskledgertype"), nullable=False
    )
    category: Mapped[TaskLedgerCategory] = mapped_column(
        Enum(TaskLedgerCategory, name="taskledgercategory"), nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=50)

    # Presentation
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Polymorphic entity reference (discriminator + id, no foreign key)
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Execution
    action_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action_endpoint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Dedup / tracing
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Scheduling
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Reversal
    undo_window_mins: Mapped[int | None] = mapped_column(Integer, nullable=True)
    undo_endpoint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    undo_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Outcome
    status: Mapped[TaskLedgerStatus] = mapped_column(
        Enum(TaskLedgerStatus, name="taskledgerstatus"),
        nullable=False,
        default=TaskLedgerStatus.PENDING,
    )
    executed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    executed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    undone_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    undone_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Provenance (informational only)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    ai_reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Audit
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        # Idempotency keys are unique across all tenants
        UniqueConstraint("idempotency_key", name="uq_task_ledger_idempotency"),
        # Dashboard queues (pending / approvals)
        Index(
            "idx_task_ledger_tenant_status_priority",
            "tenant_id",
            "status",
            "priority",
            "created_at",
        ),
        Index("idx_task_ledger_tenant_type_status", "tenant_id", "type", "status"),
        # Entity lookups and bulk cancellation
        Index("idx_task_ledger_entity", "tenant_id", "entity_type", "entity_id"),
        Index("idx_task_ledger_scheduled_for", "tenant_id", "scheduled_for"),
    )
