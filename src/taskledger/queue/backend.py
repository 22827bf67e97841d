"""Delayed-job queue backends.

A claimed job is leased, not deleted. The worker acks it when the run is
recorded, or releases it back to the queue with a delay. A lease that is
neither acked nor released (the worker died) expires and the job becomes
due again on the next claim, so delivery is at-least-once.
"""

import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger("taskledger.queue")

DEFAULT_LEASE_MS = 300_000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QueuedJob:
    """A job waiting in (or claimed from) a queue backend."""

    id: str
    name: str
    data: dict[str, Any]
    due_at_ms: int
    priority: Optional[int] = None
    backend: Optional["QueueBackend"] = field(default=None, repr=False, compare=False)

    @property
    def sort_key(self) -> tuple[int, int]:
        # Priority 1 is highest; jobs without a priority rank after all others
        return (self.priority if self.priority is not None else 1_000_000, self.due_at_ms)

    async def remove(self) -> bool:
        if self.backend is None:
            return False
        return await self.backend.remove(self.id)


class QueueBackend(ABC):
    """Abstract delayed-job queue keyed by job id."""

    @abstractmethod
    async def add(
        self,
        name: str,
        data: dict[str, Any],
        delay_ms: int,
        job_id: str,
        priority: Optional[int] = None,
    ) -> QueuedJob:
        """Add a job. Adding an id that is already queued or leased returns the existing job."""
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[QueuedJob]:
        pass

    @abstractmethod
    async def remove(self, job_id: str) -> bool:
        """Remove a waiting or leased job. Returns False when it was not there."""
        pass

    @abstractmethod
    async def claim_due(self, limit: int) -> list[QueuedJob]:
        """Lease up to ``limit`` due jobs. Expired leases are requeued first."""
        pass

    @abstractmethod
    async def ack(self, job_id: str) -> bool:
        """Finish a leased job for good."""
        pass

    @abstractmethod
    async def release(self, job_id: str, delay_ms: int = 0) -> bool:
        """Return a leased job to the queue, due after ``delay_ms``."""
        pass

    async def close(self) -> None:
        pass


class InMemoryQueueBackend(QueueBackend):
    """
    In-process queue for development and tests.

    Not shared between processes; jobs are lost on restart.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms, lease_ms: int = DEFAULT_LEASE_MS):
        self.clock = clock
        self.lease_ms = lease_ms
        self.jobs: dict[str, QueuedJob] = {}
        self.active: dict[str, QueuedJob] = {}
        self.leases: dict[str, int] = {}
        self._seq = itertools.count()
        self._order: dict[str, int] = {}

    async def add(
        self,
        name: str,
        data: dict[str, Any],
        delay_ms: int,
        job_id: str,
        priority: Optional[int] = None,
    ) -> QueuedJob:
        existing = await self.get_job(job_id)
        if existing:
            return existing

        job = QueuedJob(
            id=job_id,
            name=name,
            data=dict(data),
            due_at_ms=self.clock() + max(0, delay_ms),
            priority=priority,
            backend=self,
        )
        self.jobs[job_id] = job
        self._order[job_id] = next(self._seq)
        return job

    async def get_job(self, job_id: str) -> Optional[QueuedJob]:
        return self.jobs.get(job_id) or self.active.get(job_id)

    async def remove(self, job_id: str) -> bool:
        self._order.pop(job_id, None)
        self.leases.pop(job_id, None)
        waiting = self.jobs.pop(job_id, None)
        leased = self.active.pop(job_id, None)
        return waiting is not None or leased is not None

    def _requeue_expired(self, now: int) -> None:
        for job_id, expires_at in list(self.leases.items()):
            if expires_at > now:
                continue
            job = self.active.pop(job_id)
            del self.leases[job_id]
            job.due_at_ms = now
            self.jobs[job_id] = job
            logger.warning(f"Lease expired for job {job_id}, requeued")

    async def claim_due(self, limit: int) -> list[QueuedJob]:
        now = self.clock()
        self._requeue_expired(now)

        due = sorted(
            (job for job in self.jobs.values() if job.due_at_ms <= now),
            key=lambda job: (*job.sort_key, self._order[job.id]),
        )[:limit]

        for job in due:
            del self.jobs[job.id]
            self.active[job.id] = job
            self.leases[job.id] = now + self.lease_ms
        return due

    async def ack(self, job_id: str) -> bool:
        self.leases.pop(job_id, None)
        if self.active.pop(job_id, None) is None:
            return False
        self._order.pop(job_id, None)
        return True

    async def release(self, job_id: str, delay_ms: int = 0) -> bool:
        job = self.active.pop(job_id, None)
        if job is None:
            return False
        del self.leases[job_id]
        job.due_at_ms = self.clock() + max(0, delay_ms)
        self.jobs[job_id] = job
        return True
