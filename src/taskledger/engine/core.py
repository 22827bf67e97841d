"""Task Ledger core engine - admission, lifecycle and query operations."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from taskledger.config import settings
from taskledger.db.repositories import TaskLedgerRepository
from taskledger.engine.admission import derive_idempotency_key, initial_status
from taskledger.errors import InvalidState, TaskNotFound, UndoWindowExpired
from taskledger.events import EVENTS, EventBus
from taskledger.models import (
    CreateTaskOptions,
    LedgerOperation,
    TaskLedgerCategory,
    TaskLedgerEntry,
    TaskLedgerStatus,
    TaskLedgerType,
    TaskStats,
    allowed_sources,
)
from taskledger.observability.metrics import metrics
from taskledger.queue import QueueAdapter, approved_job_id
from taskledger.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
DEFAULT_DECLINE_REASON = "Declined by user"


class TaskLedgerEngine:
    """Core engine implementing Task Ledger operations for one session."""

    def __init__(
        self,
        session: AsyncSession,
        queue: QueueAdapter,
        bus: EventBus,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.ledger = TaskLedgerRepository(session, clock)
        self.queue = queue
        self.bus = bus
        self.clock = clock

    def _clamp_limit(self, limit: Optional[int], default: int) -> int:
        if limit is None:
            limit = default
        return max(1, min(limit, settings.max_list_limit))

    async def _get_or_raise(self, task_id: str, tenant_id: str) -> TaskLedgerEntry:
        entry = await self.ledger.get(tenant_id, task_id)
        if entry is None:
            raise TaskNotFound(task_id)
        return entry

    def _guard(self, entry: TaskLedgerEntry, operation: LedgerOperation) -> None:
        if not entry.allows(operation):
            raise InvalidState(entry.status, allowed_sources(operation))

    async def _lost_race(self, task_id: str, tenant_id: str, operation: LedgerOperation):
        """Build the error for a conditional write that matched no row."""
        current = await self._get_or_raise(task_id, tenant_id)
        logger.warning(
            f"Task {task_id} changed to {current.status.value} during {operation.value}"
        )
        return InvalidState(current.status, allowed_sources(operation))

    # =========================================================================
    # Admission
    # =========================================================================

    async def create_task(self, opts: CreateTaskOptions) -> TaskLedgerEntry:
        """
        Admit a new entry, or return the existing one for a repeated request.

        A repeated admission (same idempotency key) returns the stored entry
        unchanged: no new job, no new event.
        """
        idempotency_key = opts.idempotency_key or derive_idempotency_key(opts)

        existing = await self.ledger.get_by_idempotency_key(idempotency_key)
        if existing:
            logger.debug(f"Task already exists: {idempotency_key}")
            metrics.inc_counter("ledger.tasks.deduplicated")
            return existing

        now = self.clock()
        status = initial_status(opts.scheduled_for, now)

        entry, created = await self.ledger.create(
            opts,
            idempotency_key=idempotency_key,
            trace_id=opts.trace_id or str(uuid4()),
            status=status,
            priority=opts.priority if opts.priority is not None else settings.default_priority,
            max_retries=(
                opts.max_retries if opts.max_retries is not None else settings.default_max_retries
            ),
        )
        if not created:
            logger.debug(f"Concurrent admission absorbed: {idempotency_key}")
            metrics.inc_counter("ledger.tasks.deduplicated")
            return entry

        if status == TaskLedgerStatus.SCHEDULED:
            delay = ensure_utc(entry.scheduled_for) - now
            await self.queue.enqueue_scheduled(entry, max(0, int(delay.total_seconds() * 1000)))
            logger.info(f"Scheduled task {entry.id} for {entry.scheduled_for.isoformat()}")

        metrics.inc_counter("ledger.tasks.created")
        self.bus.emit(
            EVENTS.TASK_LEDGER_CREATED,
            {
                "tenant_id": entry.tenant_id,
                "task_id": entry.id,
                "type": entry.type.value,
                "category": entry.category.value,
                "correlation_id": entry.trace_id,
            },
        )
        return entry

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def approve_task(self, task_id: str, tenant_id: str, user_id: str) -> TaskLedgerEntry:
        """Approve an entry and queue it for immediate, high-priority execution.

        The approved job is enqueued first. The scheduled or retry job is only
        removed after the status write lands, so a failed enqueue leaves the
        entry with its existing job.
        """
        entry = await self._get_or_raise(task_id, tenant_id)
        self._guard(entry, LedgerOperation.APPROVE)

        await self.queue.enqueue_approved(entry, approved_by=user_id)

        updated = await self.ledger.transition(
            tenant_id,
            task_id,
            allowed_sources(LedgerOperation.APPROVE),
            {"status": TaskLedgerStatus.IN_PROGRESS, "scheduled_for": None},
        )
        if not updated:
            await self.queue.remove(approved_job_id(task_id))
            raise await self._lost_race(task_id, tenant_id, LedgerOperation.APPROVE)

        await self.queue.cancel_outstanding(entry)

        logger.info(f"Task {task_id} approved by {user_id}")
        metrics.inc_counter("ledger.tasks.approved")
        self.bus.emit(
            EVENTS.TASK_LEDGER_APPROVED,
            {
                "tenant_id": tenant_id,
                "task_id": task_id,
                "approved_by": user_id,
                "correlation_id": entry.trace_id,
            },
        )
        return await self._get_or_raise(task_id, tenant_id)

    async def decline_task(
        self,
        task_id: str,
        tenant_id: str,
        user_id: str,
        reason: Optional[str] = None,
    ) -> TaskLedgerEntry:
        """Decline an entry before it runs."""
        entry = await self._get_or_raise(task_id, tenant_id)
        self._guard(entry, LedgerOperation.DECLINE)

        await self.queue.cancel_outstanding(entry)

        updated = await self.ledger.transition(
            tenant_id,
            task_id,
            allowed_sources(LedgerOperation.DECLINE),
            {
                "status": TaskLedgerStatus.CANCELLED,
                "executed_by": user_id,
                "executed_at": self.clock(),
                "failure_reason": reason or DEFAULT_DECLINE_REASON,
            },
        )
        if not updated:
            raise await self._lost_race(task_id, tenant_id, LedgerOperation.DECLINE)

        logger.info(f"Task {task_id} declined by {user_id}: {reason}")
        metrics.inc_counter("ledger.tasks.declined")
        self.bus.emit(
            EVENTS.TASK_LEDGER_DECLINED,
            {
                "tenant_id": tenant_id,
                "task_id": task_id,
                "declined_by": user_id,
                "reason": reason,
                "correlation_id": entry.trace_id,
            },
        )
        return await self._get_or_raise(task_id, tenant_id)

    async def complete_task(self, task_id: str, tenant_id: str, user_id: str) -> TaskLedgerEntry:
        """Mark an entry done by hand. Nothing is dispatched."""
        entry = await self._get_or_raise(task_id, tenant_id)
        self._guard(entry, LedgerOperation.COMPLETE)

        updated = await self.ledger.transition(
            tenant_id,
            task_id,
            allowed_sources(LedgerOperation.COMPLETE),
            {
                "status": TaskLedgerStatus.COMPLETED,
                "executed_at": self.clock(),
                "executed_by": user_id,
            },
        )
        if not updated:
            raise await self._lost_race(task_id, tenant_id, LedgerOperation.COMPLETE)

        logger.info(f"Task {task_id} completed by {user_id}")
        metrics.inc_counter("ledger.tasks.completed")
        self.bus.emit(
            EVENTS.TASK_LEDGER_COMPLETED,
            {"tenant_id": tenant_id, "task_id": task_id, "correlation_id": entry.trace_id},
        )
        return await self._get_or_raise(task_id, tenant_id)

    async def undo_task(self, task_id: str, tenant_id: str, user_id: str) -> TaskLedgerEntry:
        """
        Reverse a completed entry inside its undo window.

        The window is inclusive: undo at exactly ``executed_at + undo_window_mins``
        is still accepted.
        """
        entry = await self._get_or_raise(task_id, tenant_id)
        self._guard(entry, LedgerOperation.UNDO)

        if not entry.undo_window_mins:
            raise InvalidState(
                entry.status,
                allowed_sources(LedgerOperation.UNDO),
                message=f"Task {task_id} does not support undo",
            )

        executed_at = ensure_utc(entry.executed_at or entry.updated_at)
        deadline = executed_at + timedelta(minutes=entry.undo_window_mins)
        now = self.clock()
        if now > deadline:
            raise UndoWindowExpired(deadline)

        if entry.undo_endpoint:
            self.bus.emit(
                EVENTS.TASK_LEDGER_UNDO_REQUESTED,
                {
                    "tenant_id": tenant_id,
                    "task_id": task_id,
                    "endpoint": entry.undo_endpoint,
                    "payload": entry.undo_payload,
                    "correlation_id": entry.trace_id,
                },
            )

        updated = await self.ledger.transition(
            tenant_id,
            task_id,
            allowed_sources(LedgerOperation.UNDO),
            {"status": TaskLedgerStatus.UNDONE, "undone_at": now, "undone_by": user_id},
        )
        if not updated:
            raise await self._lost_race(task_id, tenant_id, LedgerOperation.UNDO)

        logger.info(f"Task {task_id} undone by {user_id}")
        metrics.inc_counter("ledger.tasks.undone")
        self.bus.emit(
            EVENTS.TASK_LEDGER_UNDONE,
            {"tenant_id": tenant_id, "task_id": task_id, "correlation_id": entry.trace_id},
        )
        return await self._get_or_raise(task_id, tenant_id)

    async def cancel_entity_tasks(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        reason: str,
    ) -> int:
        """
        Cancel every PENDING or SCHEDULED entry for an entity.

        Queued jobs are left in place; when they fire the executor finds a
        CANCELLED entry and does nothing.
        """
        count = await self.ledger.cancel_for_entity(
            tenant_id,
            entity_type,
            entity_id,
            allowed_sources(LedgerOperation.CANCEL_ENTITY),
            reason=reason,
            cancelled_by=SYSTEM_ACTOR,
        )
        logger.info(f"Cancelled {count} tasks for {entity_type}:{entity_id}")
        metrics.inc_counter("ledger.tasks.cancelled", count)
        return count

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_pending_tasks(
        self,
        tenant_id: str,
        types: Optional[list[TaskLedgerType]] = None,
        categories: Optional[list[TaskLedgerCategory]] = None,
        limit: Optional[int] = None,
        priority_min: Optional[int] = None,
    ) -> list[TaskLedgerEntry]:
        return await self.ledger.list_pending(
            tenant_id,
            types=types,
            categories=categories,
            priority_min=priority_min,
            limit=self._clamp_limit(limit, settings.default_list_limit),
        )

    async def get_pending_approvals(
        self, tenant_id: str, limit: Optional[int] = None
    ) -> list[TaskLedgerEntry]:
        return await self.ledger.list_pending(
            tenant_id,
            types=[TaskLedgerType.APPROVAL],
            limit=self._clamp_limit(limit, 10),
        )

    async def get_todays_tasks(
        self, tenant_id: str, limit: Optional[int] = None
    ) -> list[TaskLedgerEntry]:
        """Entries scheduled for the current UTC day, or unscheduled and created today."""
        return await self.ledger.list_todays(
            tenant_id,
            limit=self._clamp_limit(limit, settings.default_list_limit),
            now=self.clock(),
        )

    async def get_task(self, task_id: str, tenant_id: str) -> TaskLedgerEntry:
        """Get one entry; other tenants' entries are reported as not found."""
        return await self._get_or_raise(task_id, tenant_id)

    async def get_entity_tasks(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None,
    ) -> list[TaskLedgerEntry]:
        return await self.ledger.list_for_entity(
            tenant_id,
            entity_type,
            entity_id,
            limit=self._clamp_limit(limit, 10),
        )

    async def get_task_stats(self, tenant_id: str) -> TaskStats:
        return TaskStats(**await self.ledger.count_stats(tenant_id, now=self.clock()))
