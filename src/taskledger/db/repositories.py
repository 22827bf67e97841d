"""Database repositories for task ledger entries."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskledger.db.tables import TaskLedgerEntryTable
from taskledger.models import (
    CreateTaskOptions,
    TaskLedgerCategory,
    TaskLedgerEntry,
    TaskLedgerStatus,
    TaskLedgerType,
    is_valid_transition,
)
from taskledger.utils.time import end_of_day, start_of_day, utc_now

# PENDING first on the "today" board
_TODAY_STATUS_RANK = case(
    (TaskLedgerEntryTable.status == TaskLedgerStatus.PENDING, 0),
    (TaskLedgerEntryTable.status == TaskLedgerStatus.SCHEDULED, 1),
    (TaskLedgerEntryTable.status == TaskLedgerStatus.IN_PROGRESS, 2),
    else_=3,
)


def _check_edges(sources: frozenset[TaskLedgerStatus], target: TaskLedgerStatus) -> None:
    invalid = sorted(s.value for s in sources if not is_valid_transition(s, target))
    if invalid:
        raise ValueError(f"No transition to {target.value} from {', '.join(invalid)}")


class TaskLedgerRepository:
    """Repository for ledger entry persistence and conditional transitions."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.session = session
        self.clock = clock

    async def create(
        self,
        opts: CreateTaskOptions,
        idempotency_key: str,
        trace_id: str,
        status: TaskLedgerStatus,
        priority: int,
        max_retries: int,
    ) -> tuple[TaskLedgerEntry, bool]:
        """
        Insert a new entry.

        Returns ``(entry, created)``. A unique-constraint violation on the
        idempotency key means a concurrent identical admission won the race:
        the transaction is rolled back and the winner's row is returned with
        ``created=False``.
        """
        now = self.clock()
        row = TaskLedgerEntryTable(
            id=str(uuid4()),
            tenant_id=opts.tenant_id,
            type=opts.type,
            category=opts.category,
            priority=priority,
            title=opts.title,
            description=opts.description,
            icon=opts.icon,
            entity_type=opts.entity_type,
            entity_id=opts.entity_id,
            action_type=opts.action_type,
            action_endpoint=opts.action_endpoint,
            payload=opts.payload,
            idempotency_key=idempotency_key,
            trace_id=trace_id,
            scheduled_for=opts.scheduled_for,
            undo_window_mins=opts.undo_window_mins,
            undo_endpoint=opts.undo_endpoint,
            undo_payload=opts.undo_payload,
            status=status,
            retry_count=0,
            max_retries=max_retries,
            ai_confidence=opts.ai_confidence,
            ai_reasoning=opts.ai_reasoning,
            ai_model=opts.ai_model,
            created_at=now,
            updated_at=now,
        )

        self.session.add(row)

        try:
            await self.session.flush()
            return self._row_to_model(row), True
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_by_idempotency_key(idempotency_key)
            if existing:
                return existing, False
            raise

    async def get(self, tenant_id: str, task_id: str) -> TaskLedgerEntry | None:
        """Get an entry by ID within a tenant."""
        return await self._select_one(
            TaskLedgerEntryTable.id == task_id,
            TaskLedgerEntryTable.tenant_id == tenant_id,
        )

    async def get_unscoped(self, task_id: str) -> TaskLedgerEntry | None:
        """Get an entry by ID regardless of tenant (executor integrity checks)."""
        return await self._select_one(TaskLedgerEntryTable.id == task_id)

    async def get_by_idempotency_key(self, key: str) -> TaskLedgerEntry | None:
        """Get an entry by its idempotency key."""
        return await self._select_one(TaskLedgerEntryTable.idempotency_key == key)

    async def transition(
        self,
        tenant_id: str,
        task_id: str,
        from_statuses: Iterable[TaskLedgerStatus],
        values: dict[str, Any],
    ) -> bool:
        """
        Conditionally update an entry.

        The write only lands if the entry is still in one of ``from_statuses``.
        Returns True when exactly one row was updated. A status change that
        is not an edge of the state machine from every source raises ValueError.
        """
        sources = frozenset(from_statuses)
        if "status" in values:
            _check_edges(sources, values["status"])

        result = await self.session.execute(
            update(TaskLedgerEntryTable)
            .where(
                TaskLedgerEntryTable.id == task_id,
                TaskLedgerEntryTable.tenant_id == tenant_id,
                TaskLedgerEntryTable.status.in_(list(sources)),
            )
            .values(**values, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel_for_entity(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        from_statuses: Iterable[TaskLedgerStatus],
        reason: str,
        cancelled_by: str,
    ) -> int:
        """Cancel every open entry for an entity in a single statement."""
        sources = frozenset(from_statuses)
        _check_edges(sources, TaskLedgerStatus.CANCELLED)
        now = self.clock()
        result = await self.session.execute(
            update(TaskLedgerEntryTable)
            .where(
                TaskLedgerEntryTable.tenant_id == tenant_id,
                TaskLedgerEntryTable.entity_type == entity_type,
                TaskLedgerEntryTable.entity_id == entity_id,
                TaskLedgerEntryTable.status.in_(list(sources)),
            )
            .values(
                status=TaskLedgerStatus.CANCELLED,
                failure_reason=reason,
                executed_at=now,
                executed_by=cancelled_by,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def list_pending(
        self,
        tenant_id: str,
        types: list[TaskLedgerType] | None = None,
        categories: list[TaskLedgerCategory] | None = None,
        priority_min: int | None = None,
        limit: int = 20,
    ) -> list[TaskLedgerEntry]:
        """List PENDING entries, most urgent first."""
        query = select(TaskLedgerEntryTable).where(
            TaskLedgerEntryTable.tenant_id == tenant_id,
            TaskLedgerEntryTable.status == TaskLedgerStatus.PENDING,
        )

        if types:
            query = query.where(TaskLedgerEntryTable.type.in_(types))
        if categories:
            query = query.where(TaskLedgerEntryTable.category.in_(categories))
        if priority_min is not None:
            query = query.where(TaskLedgerEntryTable.priority >= priority_min)

        query = query.order_by(
            TaskLedgerEntryTable.priority.desc(),
            TaskLedgerEntryTable.created_at.asc(),
        ).limit(limit)

        return await self._select_many(query)

    async def list_todays(
        self,
        tenant_id: str,
        limit: int = 20,
        now: datetime | None = None,
    ) -> list[TaskLedgerEntry]:
        """List entries scheduled for today, or unscheduled and created today."""
        day_start = start_of_day(now or self.clock())
        day_end = end_of_day(now or self.clock())

        query = (
            select(TaskLedgerEntryTable)
            .where(
                TaskLedgerEntryTable.tenant_id == tenant_id,
                TaskLedgerEntryTable.status.in_(
                    [
                        TaskLedgerStatus.PENDING,
                        TaskLedgerStatus.SCHEDULED,
                        TaskLedgerStatus.IN_PROGRESS,
                        TaskLedgerStatus.COMPLETED,
                    ]
                ),
                or_(
                    TaskLedgerEntryTable.scheduled_for.between(day_start, day_end),
                    and_(
                        TaskLedgerEntryTable.scheduled_for.is_(None),
                        TaskLedgerEntryTable.created_at >= day_start,
                    ),
                ),
            )
            .order_by(
                _TODAY_STATUS_RANK,
                TaskLedgerEntryTable.priority.desc(),
                TaskLedgerEntryTable.scheduled_for.asc(),
            )
            .limit(limit)
        )

        return await self._select_many(query)

    async def list_for_entity(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        limit: int = 10,
    ) -> list[TaskLedgerEntry]:
        """List an entity's entries, newest first."""
        query = (
            select(TaskLedgerEntryTable)
            .where(
                TaskLedgerEntryTable.tenant_id == tenant_id,
                TaskLedgerEntryTable.entity_type == entity_type,
                TaskLedgerEntryTable.entity_id == entity_id,
            )
            .order_by(TaskLedgerEntryTable.created_at.desc())
            .limit(limit)
        )
        return await self._select_many(query)

    async def count(self, tenant_id: str, *criteria) -> int:
        """Count a tenant's entries matching extra criteria."""
        result = await self.session.execute(
            select(func.count())
            .select_from(TaskLedgerEntryTable)
            .where(TaskLedgerEntryTable.tenant_id == tenant_id, *criteria)
        )
        return int(result.scalar_one())

    async def count_stats(self, tenant_id: str, now: datetime | None = None) -> dict[str, int]:
        """Compute dashboard counters for a tenant."""
        day_start = start_of_day(now or self.clock())
        table = TaskLedgerEntryTable

        return {
            "pending": await self.count(
                tenant_id,
                table.status == TaskLedgerStatus.PENDING,
                table.type != TaskLedgerType.APPROVAL,
            ),
            "approvals": await self.count(
                tenant_id,
                table.status == TaskLedgerStatus.PENDING,
                table.type == TaskLedgerType.APPROVAL,
            ),
            "completed_today": await self.count(
                tenant_id,
                table.status == TaskLedgerStatus.COMPLETED,
                table.executed_at >= day_start,
            ),
            "failed_today": await self.count(
                tenant_id,
                table.status == TaskLedgerStatus.FAILED,
                table.updated_at >= day_start,
            ),
        }

    async def _select_one(self, *criteria) -> TaskLedgerEntry | None:
        result = await self.session.execute(
            select(TaskLedgerEntryTable)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def _select_many(self, query) -> list[TaskLedgerEntry]:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [self._row_to_model(r) for r in result.scalars().all()]

    def _row_to_model(self, row: TaskLedgerEntryTable) -> TaskLedgerEntry:
        """Convert database row to model."""
        return TaskLedgerEntry.model_validate(row, from_attributes=True)
