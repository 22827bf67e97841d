"""Redis-backed delayed-job queue.

Layout per queue name:

- ``{prefix}:{name}:delayed`` sorted set, member = job id, score = due time (ms)
- ``{prefix}:{name}:active`` sorted set, member = job id, score = lease expiry (ms)
- ``{prefix}:{name}:job:{id}`` string, JSON job body

A job id lives in at most one of the two sets. Claiming moves it from
``delayed`` to ``active`` in one MULTI block; only the worker whose ZREM
returned 1 owns the lease. The body is deleted on ack or remove. Expired
leases are moved back to ``delayed`` by the next claim, so a worker that dies
mid-job does not lose it.
"""

import json
import logging
import time
from typing import Any, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from taskledger.queue.backend import DEFAULT_LEASE_MS, QueueBackend, QueuedJob

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 5


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisQueueBackend(QueueBackend):
    """Sorted-set delayed queue with leases, using redis.asyncio."""

    def __init__(
        self,
        redis_url: Optional[str],
        queue_name: str,
        prefix: str = "taskledger",
        lease_ms: int = DEFAULT_LEASE_MS,
        clock: Callable[[], int] = _now_ms,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self.queue_name = queue_name
        self.lease_ms = lease_ms
        self.clock = clock
        self.delayed_key = f"{prefix}:{queue_name}:delayed"
        self.active_key = f"{prefix}:{queue_name}:active"
        self._job_prefix = f"{prefix}:{queue_name}:job:"
        logger.info(f"Redis queue backend initialized: {queue_name}")

    def job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    def _decode(self, raw: str) -> QueuedJob:
        body = json.loads(raw)
        return QueuedJob(
            id=body["id"],
            name=body["name"],
            data=body["data"],
            due_at_ms=body["due_at_ms"],
            priority=body.get("priority"),
            backend=self,
        )

    @staticmethod
    def _encode(job: QueuedJob) -> str:
        return json.dumps(
            {
                "id": job.id,
                "name": job.name,
                "data": job.data,
                "due_at_ms": job.due_at_ms,
                "priority": job.priority,
            }
        )

    async def add(
        self,
        name: str,
        data: dict[str, Any],
        delay_ms: int,
        job_id: str,
        priority: Optional[int] = None,
    ) -> QueuedJob:
        job = QueuedJob(
            id=job_id,
            name=name,
            data=dict(data),
            due_at_ms=self.clock() + max(0, delay_ms),
            priority=priority,
            backend=self,
        )
        key = self.job_key(job_id)

        # Body and schedule are written together, or not at all
        async with self.redis.pipeline(transaction=True) as pipe:
            for _ in range(MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    existing = await pipe.get(key)
                    if existing:
                        await pipe.unwatch()
                        return self._decode(existing)
                    pipe.multi()
                    pipe.set(key, self._encode(job))
                    pipe.zadd(self.delayed_key, {job_id: job.due_at_ms})
                    await pipe.execute()
                    return job
                except WatchError:
                    continue
        raise RuntimeError(f"Job {job_id} kept changing while being added")

    async def get_job(self, job_id: str) -> Optional[QueuedJob]:
        raw = await self.redis.get(self.job_key(job_id))
        return self._decode(raw) if raw else None

    async def remove(self, job_id: str) -> bool:
        pipe = self.redis.pipeline(transaction=True)
        pipe.zrem(self.delayed_key, job_id)
        pipe.zrem(self.active_key, job_id)
        pipe.delete(self.job_key(job_id))
        _, _, deleted = await pipe.execute()
        return bool(deleted)

    async def _requeue_expired(self, now: int) -> None:
        expired = await self.redis.zrangebyscore(self.active_key, "-inf", now)
        for job_id in expired:
            pipe = self.redis.pipeline(transaction=True)
            pipe.zrem(self.active_key, job_id)
            pipe.zadd(self.delayed_key, {job_id: now}, nx=True)
            moved, _ = await pipe.execute()
            if moved:
                logger.warning(f"Lease expired for job {job_id}, requeued")

    async def claim_due(self, limit: int) -> list[QueuedJob]:
        now = self.clock()
        await self._requeue_expired(now)

        job_ids = await self.redis.zrangebyscore(
            self.delayed_key, "-inf", now, start=0, num=limit
        )

        claimed: list[QueuedJob] = []
        for job_id in job_ids:
            pipe = self.redis.pipeline(transaction=True)
            pipe.zrem(self.delayed_key, job_id)
            pipe.zadd(self.active_key, {job_id: now + self.lease_ms}, nx=True)
            won, added = await pipe.execute()
            # Another worker may have claimed it first
            if not won:
                if added:
                    await self.redis.zrem(self.active_key, job_id)
                continue

            raw = await self.redis.get(self.job_key(job_id))
            if raw is None:
                logger.warning(f"Claimed job {job_id} has no body, dropping")
                await self.redis.zrem(self.active_key, job_id)
                continue
            claimed.append(self._decode(raw))

        claimed.sort(key=lambda job: job.sort_key)
        return claimed

    async def ack(self, job_id: str) -> bool:
        pipe = self.redis.pipeline(transaction=True)
        pipe.zrem(self.active_key, job_id)
        pipe.delete(self.job_key(job_id))
        leased, _ = await pipe.execute()
        return bool(leased)

    async def release(self, job_id: str, delay_ms: int = 0) -> bool:
        key = self.job_key(job_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            for _ in range(MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    leased = await pipe.zscore(self.active_key, job_id)
                    if raw is None or leased is None:
                        await pipe.unwatch()
                        return False
                    job = self._decode(raw)
                    job.due_at_ms = self.clock() + max(0, delay_ms)
                    pipe.multi()
                    pipe.zrem(self.active_key, job_id)
                    pipe.zadd(self.delayed_key, {job_id: job.due_at_ms})
                    pipe.set(key, self._encode(job))
                    await pipe.execute()
                    return True
                except WatchError:
                    continue
        raise RuntimeError(f"Job {job_id} kept changing while being released")

    async def close(self) -> None:
        await self.redis.aclose()
