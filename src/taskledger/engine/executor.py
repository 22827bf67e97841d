"""Executor - runs one queued job against its ledger entry."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from taskledger.db.repositories import TaskLedgerRepository
from taskledger.engine.dispatcher import ActionDispatcher
from taskledger.engine.retry import RetryPolicy
from taskledger.errors import ActionExecutionError, QueueError
from taskledger.events import EVENTS, EventBus
from taskledger.models import (
    EXECUTOR_NOOP_STATES,
    ExecuteTaskResult,
    LedgerOperation,
    TaskLedgerEntry,
    TaskLedgerJob,
    TaskLedgerStatus,
    allowed_sources,
)
from taskledger.observability.metrics import metrics
from taskledger.observability.trace import set_trace_id
from taskledger.queue import QueueAdapter
from taskledger.utils.time import utc_now

logger = logging.getLogger("taskledger.executor")

SYSTEM_ACTOR = "SYSTEM"
HUMAN_TASK_RESULT = {"message": "Human task acknowledged"}


class TaskExecutor:
    """
    Execute ledger entries delivered by the queue.

    Delivery is at-least-once. Entries already in a terminal status are
    acknowledged without side effects, so redelivered and orphaned jobs are
    harmless.
    """

    def __init__(
        self,
        session: AsyncSession,
        queue: QueueAdapter,
        dispatcher: ActionDispatcher,
        bus: EventBus,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.ledger = TaskLedgerRepository(session, clock)
        self.queue = queue
        self.dispatcher = dispatcher
        self.bus = bus
        self.policy = policy or RetryPolicy.from_settings()
        self.clock = clock

    async def run_job(self, job: TaskLedgerJob) -> ExecuteTaskResult:
        return await self.execute(job.task_id, job.tenant_id, job.approved_by)

    async def execute(
        self,
        task_id: str,
        tenant_id: str,
        approved_by: Optional[str] = None,
    ) -> ExecuteTaskResult:
        """Execute one entry and record the outcome on it."""
        logger.info(f"Processing task {task_id} for tenant {tenant_id}")
        metrics.inc_counter("executor.jobs")

        entry = await self.ledger.get_unscoped(task_id)
        if entry is None:
            logger.warning(f"Task {task_id} not found")
            metrics.inc_counter("executor.rejected")
            return ExecuteTaskResult(success=False, error="Task not found")

        if entry.tenant_id != tenant_id:
            logger.warning(
                f"Task {task_id} tenant mismatch: expected {tenant_id}, got {entry.tenant_id}"
            )
            metrics.inc_counter("executor.rejected")
            return ExecuteTaskResult(success=False, error="Tenant mismatch")

        set_trace_id(entry.trace_id)

        if entry.status in EXECUTOR_NOOP_STATES:
            logger.info(f"Task {task_id} already processed ({entry.status.value})")
            metrics.inc_counter("executor.noop")
            return ExecuteTaskResult(success=True)

        claimed = await self.ledger.transition(
            tenant_id,
            task_id,
            allowed_sources(LedgerOperation.EXECUTE),
            {"status": TaskLedgerStatus.IN_PROGRESS},
        )
        if not claimed:
            current = await self.ledger.get_unscoped(task_id)
            if current and current.status in EXECUTOR_NOOP_STATES:
                metrics.inc_counter("executor.noop")
                return ExecuteTaskResult(success=True)
            status = current.status.value if current else "missing"
            logger.warning(f"Task {task_id} could not be claimed (status {status})")
            return ExecuteTaskResult(success=False, error=f"Task is {status}")

        executed_by = approved_by or SYSTEM_ACTOR

        if not entry.action_type:
            await self._mark_completed(entry, executed_by, HUMAN_TASK_RESULT)
            return ExecuteTaskResult(success=True, result=HUMAN_TASK_RESULT)

        try:
            with metrics.timer("executor.dispatch.duration_ms"):
                result = await self.dispatcher.dispatch(entry)
        except Exception as e:
            retryable = e.retryable if isinstance(e, ActionExecutionError) else True
            error = e.message if isinstance(e, ActionExecutionError) else str(e)
            logger.error(f"Task {task_id} failed: {error}")
            await self._handle_failure(entry, error, retryable, approved_by)
            return ExecuteTaskResult(success=False, error=error)

        await self._mark_completed(entry, executed_by, result)
        return ExecuteTaskResult(success=True, result=result)

    async def _mark_completed(
        self,
        entry: TaskLedgerEntry,
        executed_by: str,
        result: dict[str, Any],
    ) -> None:
        updated = await self.ledger.transition(
            entry.tenant_id,
            entry.id,
            [TaskLedgerStatus.IN_PROGRESS],
            {
                "status": TaskLedgerStatus.COMPLETED,
                "executed_at": self.clock(),
                "executed_by": executed_by,
                "result": result,
            },
        )
        if not updated:
            logger.warning(f"Task {entry.id} left IN_PROGRESS before completion was recorded")

        metrics.inc_counter("executor.succeeded")
        self._emit_executed(entry, success=True)

    async def _handle_failure(
        self,
        entry: TaskLedgerEntry,
        error: str,
        retryable: bool,
        approved_by: Optional[str],
    ) -> None:
        """Re-schedule with backoff or fail the entry for good.

        The retry job is enqueued before the entry is persisted as SCHEDULED.
        If the enqueue fails the entry goes straight to FAILED, so a SCHEDULED
        entry always has a live job.
        """
        decision = self.policy.decide(entry.retry_count, entry.max_retries, retryable)

        if not decision.retry:
            await self._mark_failed(entry, error)
            return

        try:
            await self.queue.enqueue_retry(entry, decision.attempt, decision.delay_ms, approved_by)
        except QueueError as qe:
            logger.error(f"Retry enqueue failed for task {entry.id}: {qe.message}")
            await self._mark_failed(entry, f"{error} | Retry enqueue failed: {qe.message}")
            return

        await self.ledger.transition(
            entry.tenant_id,
            entry.id,
            [TaskLedgerStatus.IN_PROGRESS],
            {
                "status": TaskLedgerStatus.SCHEDULED,
                "retry_count": decision.attempt,
                "scheduled_for": self.clock() + decision.delay,
                "failure_reason": error,
            },
        )
        metrics.inc_counter("executor.retries_scheduled")
        logger.info(
            f"Task {entry.id} scheduled for retry {decision.attempt}/{entry.max_retries} "
            f"in {decision.delay.total_seconds():.0f}s"
        )
        self._emit_executed(entry, success=False, error=error)

    async def _mark_failed(self, entry: TaskLedgerEntry, reason: str) -> None:
        await self.ledger.transition(
            entry.tenant_id,
            entry.id,
            [TaskLedgerStatus.IN_PROGRESS],
            {
                "status": TaskLedgerStatus.FAILED,
                "failure_reason": reason,
                "executed_at": self.clock(),
            },
        )
        metrics.inc_counter("executor.failed")
        logger.warning(f"Task {entry.id} failed permanently: {reason}")
        self._emit_executed(entry, success=False, error=reason)

    def _emit_executed(
        self,
        entry: TaskLedgerEntry,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        payload: dict[str, Any] = {
            "tenant_id": entry.tenant_id,
            "task_id": entry.id,
            "action_type": entry.action_type,
            "success": success,
            "correlation_id": entry.trace_id,
        }
        if error:
            payload["error"] = error
        self.bus.emit(EVENTS.TASK_LEDGER_EXECUTED, payload)
