"""Queue adapter: ledger-aware job naming over a queue backend."""

import logging
from typing import Optional

from taskledger.config import settings
from taskledger.errors import QueueError
from taskledger.models import TaskLedgerEntry, TaskLedgerJob
from taskledger.observability.metrics import metrics
from taskledger.queue.backend import QueueBackend, QueuedJob

logger = logging.getLogger("taskledger.queue")


def scheduled_job_id(task_id: str) -> str:
    return f"scheduled-{task_id}"


def approved_job_id(task_id: str) -> str:
    return f"approved-{task_id}"


def retry_job_id(task_id: str, attempt: int) -> str:
    return f"retry-{task_id}-{attempt}"


class QueueAdapter:
    """Enqueue and cancel execution jobs for ledger entries."""

    def __init__(self, backend: QueueBackend, queue_name: Optional[str] = None):
        self.backend = backend
        self.queue_name = queue_name or settings.queue_name

    async def enqueue(
        self,
        job_id: str,
        job: TaskLedgerJob,
        delay_ms: int = 0,
        priority: Optional[int] = None,
    ) -> QueuedJob:
        """Add an execution job. Backend failures raise QueueError."""
        try:
            queued = await self.backend.add(
                self.queue_name,
                job.model_dump(exclude_none=True),
                delay_ms=max(0, delay_ms),
                job_id=job_id,
                priority=priority,
            )
        except Exception as e:
            metrics.inc_counter("queue.errors")
            logger.error(f"Failed to enqueue job {job_id}: {e}")
            raise QueueError(f"Failed to enqueue job {job_id}: {e}") from e

        metrics.inc_counter("queue.enqueued")
        logger.debug(f"Enqueued job {job_id} (delay {delay_ms}ms, priority {priority})")
        return queued

    async def enqueue_scheduled(self, entry: TaskLedgerEntry, delay_ms: int) -> QueuedJob:
        return await self.enqueue(
            scheduled_job_id(entry.id),
            TaskLedgerJob(task_id=entry.id, tenant_id=entry.tenant_id),
            delay_ms=delay_ms,
        )

    async def enqueue_approved(self, entry: TaskLedgerEntry, approved_by: str) -> QueuedJob:
        return await self.enqueue(
            approved_job_id(entry.id),
            TaskLedgerJob(task_id=entry.id, tenant_id=entry.tenant_id, approved_by=approved_by),
            priority=settings.approval_job_priority,
        )

    async def enqueue_retry(
        self,
        entry: TaskLedgerEntry,
        attempt: int,
        delay_ms: int,
        approved_by: Optional[str] = None,
    ) -> QueuedJob:
        return await self.enqueue(
            retry_job_id(entry.id, attempt),
            TaskLedgerJob(task_id=entry.id, tenant_id=entry.tenant_id, approved_by=approved_by),
            delay_ms=delay_ms,
        )

    async def remove(self, job_id: str) -> bool:
        """Best-effort removal; failures are logged, never raised."""
        try:
            job = await self.backend.get_job(job_id)
            if job is None:
                return False
            return await job.remove()
        except Exception as e:
            metrics.inc_counter("queue.cancel_errors")
            logger.warning(f"Failed to remove job {job_id}: {e}")
            return False

    async def cancel_outstanding(self, entry: TaskLedgerEntry) -> list[str]:
        """Remove the entry's scheduled job and current retry job, if queued."""
        candidates = [scheduled_job_id(entry.id)]
        if entry.retry_count > 0:
            candidates.append(retry_job_id(entry.id, entry.retry_count))

        removed = [job_id for job_id in candidates if await self.remove(job_id)]
        if removed:
            logger.info(f"Cancelled jobs for task {entry.id}: {', '.join(removed)}")
        return removed

    async def ack(self, job: QueuedJob) -> bool:
        """Finish a claimed job. On failure the lease expires and the job is redelivered."""
        try:
            return await self.backend.ack(job.id)
        except Exception as e:
            metrics.inc_counter("queue.ack_errors")
            logger.warning(f"Failed to ack job {job.id}: {e}")
            return False

    async def release(self, job: QueuedJob, delay_ms: int = 0) -> bool:
        """Put a claimed job back, due after ``delay_ms``. Failures leave the lease to expire."""
        try:
            return await self.backend.release(job.id, delay_ms=max(0, delay_ms))
        except Exception as e:
            metrics.inc_counter("queue.release_errors")
            logger.warning(f"Failed to release job {job.id}, it returns when its lease expires: {e}")
            return False
