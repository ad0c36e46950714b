"""RedisJobStore: delivery queue persistence shared by every worker process."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ...ports.queue import IJobStore
from ...queue.job import DeliveryJob, JobStatus
from .scripts import as_text, run_script

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("notification_engine.redis.jobs")

# KEYS: [due, processing]  ARGV: [now_ts, limit, lease_until_ts]
_CLAIM_DUE_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    redis.call('ZADD', KEYS[2], ARGV[3], id)
end
return ids
"""

# KEYS: [due, processing]  ARGV: [job_id, lease_until_ts]
_CLAIM_ONE_SCRIPT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
    redis.call('ZADD', KEYS[2], ARGV[2], ARGV[1])
    return 1
end
return 0
"""

# KEYS: [processing]  ARGV: [now_ts]
_TAKE_EXPIRED_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
end
return ids
"""


class RedisJobStore(IJobStore):
    """
    Job store on Redis sorted sets.

    Each job is one JSON string. Its id sits in exactly one index: ``due``
    (QUEUED, scored by run time), ``processing`` (scored by lease expiry),
    ``dead`` or ``finished`` (scored by last update). Claims move ids from
    ``due`` to ``processing`` inside a Lua script, so no two workers ever
    hold the same job. Dedup keys use ``SET NX EX``.
    """

    def __init__(
        self, redis: Redis, *, prefix: str = "notify:jobs"  # type: ignore[type-arg]
    ) -> None:
        self._redis = redis
        self._prefix = prefix

    # -- keys -------------------------------------------------------------

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _dedup_key(self, key: str) -> str:
        return f"{self._prefix}:dedup:{key}"

    @property
    def _due(self) -> str:
        return f"{self._prefix}:due"

    @property
    def _processing(self) -> str:
        return f"{self._prefix}:processing"

    @property
    def _dead(self) -> str:
        return f"{self._prefix}:dead"

    @property
    def _finished(self) -> str:
        return f"{self._prefix}:finished"

    # -- IJobStore --------------------------------------------------------

    async def add(self, job: DeliveryJob, dedup_ttl_seconds: int) -> str:
        if job.idempotency_key:
            dedup_key = self._dedup_key(job.idempotency_key)
            stored = await self._redis.set(dedup_key, job.id, nx=True, ex=dedup_ttl_seconds)
            if not stored:
                existing = await self._redis.get(dedup_key)
                if existing:
                    return as_text(existing)
        await self.save(job)
        return job.id

    async def get(self, job_id: str) -> DeliveryJob | None:
        raw = await self._redis.get(self._job_key(job_id))
        return DeliveryJob.model_validate_json(raw) if raw else None

    async def claim_due(
        self, now: datetime, limit: int, lease_seconds: float
    ) -> list[DeliveryJob]:
        ids = await run_script(
            self._redis,
            _CLAIM_DUE_SCRIPT,
            [self._due, self._processing],
            [now.timestamp(), limit, now.timestamp() + lease_seconds],
        )
        claimed: list[DeliveryJob] = []
        for raw_id in ids or []:
            job = await self.get(as_text(raw_id))
            if job is None:
                await self._redis.zrem(self._processing, raw_id)
                continue
            job.start_processing(lease_seconds, now)
            await self.save(job)
            claimed.append(job)
        return claimed

    async def claim(
        self, job_id: str, now: datetime, lease_seconds: float
    ) -> DeliveryJob | None:
        taken = await run_script(
            self._redis,
            _CLAIM_ONE_SCRIPT,
            [self._due, self._processing],
            [job_id, now.timestamp() + lease_seconds],
        )
        if not int(taken or 0):
            return None
        job = await self.get(job_id)
        if job is None:
            return None
        job.start_processing(lease_seconds, now)
        await self.save(job)
        return job

    async def save(self, job: DeliveryJob) -> None:
        index, score = self._index_for(job)
        async with self._redis.pipeline() as pipe:
            pipe.set(self._job_key(job.id), job.model_dump_json())
            for name in (self._due, self._processing, self._dead, self._finished):
                if name != index:
                    pipe.zrem(name, job.id)
            pipe.zadd(index, {job.id: score})
            await pipe.execute()

    async def reclaim_expired(self, now: datetime) -> list[DeliveryJob]:
        ids = await run_script(
            self._redis, _TAKE_EXPIRED_SCRIPT, [self._processing], [now.timestamp()]
        )
        reclaimed: list[DeliveryJob] = []
        for raw_id in ids or []:
            job = await self.get(as_text(raw_id))
            if job is None:
                continue
            if job.status != JobStatus.PROCESSING:
                # Index drifted from the stored status; put it back where it belongs.
                await self.save(job)
                continue
            if job.budget_exhausted:
                job.dead_letter("lease expired on final attempt")
            else:
                job.release_lease(now)
            await self.save(job)
            reclaimed.append(job)
        return reclaimed

    async def list_dead(self, limit: int = 100) -> list[DeliveryJob]:
        ids = await self._redis.zrange(self._dead, 0, limit - 1)
        return await self._load([as_text(i) for i in ids])

    async def depth(self) -> dict[str, int]:
        ids = [
            as_text(i)
            for name in (self._due, self._processing)
            for i in await self._redis.zrange(name, 0, -1)
        ]
        counts: dict[str, int] = {}
        for job in await self._load(ids):
            bucket = job.channel.value if job.channel is not None else job.kind.value
            counts[bucket] = counts.get(bucket, 0) + 1
        return counts

    async def purge_finished(self, older_than: datetime) -> int:
        ids = await self._redis.zrangebyscore(self._finished, "-inf", older_than.timestamp())
        if not ids:
            return 0
        await self._redis.delete(*(self._job_key(as_text(i)) for i in ids))
        await self._redis.zrem(self._finished, *ids)
        return len(ids)

    # -- internals --------------------------------------------------------

    def _index_for(self, job: DeliveryJob) -> tuple[str, float]:
        if job.status == JobStatus.QUEUED:
            return self._due, job.scheduled_at.timestamp()
        if job.status == JobStatus.PROCESSING:
            lease = job.lease_expires_at or job.updated_at
            return self._processing, lease.timestamp()
        if job.status == JobStatus.DEAD:
            return self._dead, job.updated_at.timestamp()
        return self._finished, job.updated_at.timestamp()

    async def _load(self, ids: list[str]) -> list[DeliveryJob]:
        if not ids:
            return []
        values: list[Any] = await self._redis.mget([self._job_key(i) for i in ids])
        return [DeliveryJob.model_validate_json(v) for v in values if v]
