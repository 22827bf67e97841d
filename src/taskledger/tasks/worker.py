"""Queue worker background task - claims due jobs and runs the executor."""

import asyncio
import logging
import random
from contextlib import AbstractAsyncContextManager
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from taskledger.config import settings
from taskledger.db.base import get_session
from taskledger.engine import ActionDispatcher, TaskExecutor
from taskledger.events import EventBus
from taskledger.models import TaskLedgerJob
from taskledger.observability.metrics import metrics
from taskledger.observability.trace import set_trace_id
from taskledger.queue import QueueAdapter, QueuedJob

logger = logging.getLogger("taskledger.worker")

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_worker_task: Optional[asyncio.Task] = None
_shutdown_event: Optional[asyncio.Event] = None


async def run_job(
    job: QueuedJob,
    queue: QueueAdapter,
    bus: EventBus,
    session_scope: SessionScope = get_session,
) -> None:
    """Run one leased job in its own session.

    The job is acked once the executor has recorded the outcome. If it cannot
    be run (database unavailable) it is released back to the queue under the
    same id. When neither ack nor release reaches the backend the lease
    expires and the job is delivered again.
    """
    set_trace_id()
    try:
        data = TaskLedgerJob.model_validate(job.data)
    except ValueError as e:
        logger.error(f"Dropping malformed job {job.id}: {e}")
        metrics.inc_counter("worker.jobs.malformed")
        await queue.ack(job)
        return

    try:
        async with session_scope() as session:
            executor = TaskExecutor(session, queue, ActionDispatcher(bus), bus)
            result = await executor.run_job(data)
    except Exception as e:
        logger.error(f"Job {job.id} crashed, requeueing: {e}", exc_info=True)
        metrics.inc_counter("worker.jobs.requeued")
        await queue.release(job, delay_ms=settings.retry_base_delay_seconds * 1000)
        return

    metrics.inc_counter("worker.jobs.processed")
    if not result.success:
        logger.info(f"Job {job.id} finished unsuccessfully: {result.error}")
    await queue.ack(job)


async def process_due_jobs(
    queue: QueueAdapter,
    bus: EventBus,
    batch_size: Optional[int] = None,
    session_scope: SessionScope = get_session,
) -> int:
    """Claim and run a batch of due jobs. Returns the number claimed.

    A failure in one job never stops the rest of the batch; the failed job
    keeps its lease and comes back when the lease expires.
    """
    jobs = await queue.backend.claim_due(batch_size or settings.worker_batch_size)
    for job in jobs:
        try:
            await run_job(job, queue, bus, session_scope)
        except Exception as e:
            logger.error(f"Job {job.id} failed outside the executor: {e}", exc_info=True)
            metrics.inc_counter("worker.jobs.errors")
    return len(jobs)


async def worker_loop(queue: QueueAdapter, bus: EventBus):
    """
    Background loop that feeds due queue jobs to the executor.

    Several processes may run this loop against one Redis queue: claiming a
    job leases it to one worker, and the executor treats terminal entries as
    no-ops, so redelivery after an expired lease is harmless.
    """
    base_interval = settings.worker_poll_interval_seconds
    batch_size = settings.worker_batch_size
    logger.info(f"Queue worker started (poll interval: {base_interval}s, batch: {batch_size})")

    while not _shutdown_event.is_set():
        claimed = 0
        try:
            claimed = await process_due_jobs(queue, bus, batch_size)
            if claimed:
                logger.debug(f"Processed {claimed} queued jobs")
        except Exception as e:
            logger.error(f"Queue worker error: {e}", exc_info=True)

        # A full batch means more work is probably due
        if claimed >= batch_size:
            continue

        jittered_interval = base_interval * random.uniform(0.8, 1.2)
        try:
            await asyncio.wait_for(_shutdown_event.wait(), timeout=jittered_interval)
        except asyncio.TimeoutError:
            pass

    logger.info("Queue worker stopped")


async def start_worker(queue: QueueAdapter, bus: EventBus):
    """Start the queue worker background task."""
    global _worker_task, _shutdown_event

    _shutdown_event = asyncio.Event()
    _worker_task = asyncio.create_task(worker_loop(queue, bus))


async def stop_worker():
    """Stop the queue worker background task."""
    global _worker_task, _shutdown_event

    if _shutdown_event:
        _shutdown_event.set()

    if _worker_task:
        try:
            await asyncio.wait_for(_worker_task, timeout=10.0)
        except asyncio.TimeoutError:
            logger.warning("Queue worker did not stop gracefully, cancelling")
            _worker_task.cancel()
            try:
                await _worker_task
            except asyncio.CancelledError:
                pass

    _worker_task = None
    _shutdown_event = None
