"""Task Ledger delayed-job queue."""

from typing import Optional

from taskledger.config import QueueBackendKind, Settings, settings
from taskledger.queue.adapter import (
    QueueAdapter,
    approved_job_id,
    retry_job_id,
    scheduled_job_id,
)
from taskledger.queue.backend import InMemoryQueueBackend, QueueBackend, QueuedJob


def build_queue_backend(config: Optional[Settings] = None) -> QueueBackend:
    """Create the configured queue backend."""
    config = config or settings

    if config.queue_backend == QueueBackendKind.REDIS:
        if not config.redis_url:
            raise ValueError("redis_url required for redis queue backend")
        from taskledger.queue.redis_backend import RedisQueueBackend

        return RedisQueueBackend(
            config.redis_url, config.queue_name, lease_ms=config.queue_lease_seconds * 1000
        )

    return InMemoryQueueBackend(lease_ms=config.queue_lease_seconds * 1000)


__all__ = [
    "InMemoryQueueBackend",
    "QueueAdapter",
    "QueueBackend",
    "QueuedJob",
    "approved_job_id",
    "build_queue_backend",
    "retry_job_id",
    "scheduled_job_id",
]
