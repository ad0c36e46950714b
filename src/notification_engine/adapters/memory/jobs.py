"""InMemoryJobStore: in-memory delivery queue persistence for testing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ...ports.queue import IJobStore
from ...queue.job import FINAL_STATUSES, JobStatus

if TYPE_CHECKING:
    from ...queue.job import DeliveryJob


def job_bucket(job: DeliveryJob) -> str:
    """Depth bucket: the channel for deliveries, otherwise the job kind."""
    return job.channel.value if job.channel is not None else job.kind.value


class InMemoryJobStore(IJobStore):
    """
    Job store keeping deep copies, so callers never mutate stored state
    without an explicit :meth:`save` (mirrors a real persistence boundary).
    """

    def __init__(self) -> None:
        self._jobs: dict[str, DeliveryJob] = {}
        # idempotency key -> (job id, dedup window end)
        self._dedup: dict[str, tuple[str, datetime]] = {}

    async def add(self, job: DeliveryJob, dedup_ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        if job.idempotency_key:
            seen = self._dedup.get(job.idempotency_key)
            if seen is not None and seen[1] > now:
                return seen[0]
            self._dedup[job.idempotency_key] = (
                job.id,
                now + timedelta(seconds=dedup_ttl_seconds),
            )
        self._jobs[job.id] = job.model_copy(deep=True)
        return job.id

    async def get(self, job_id: str) -> DeliveryJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def claim_due(
        self, now: datetime, limit: int, lease_seconds: float
    ) -> list[DeliveryJob]:
        due = sorted(
            (j for j in self._jobs.values() if j.is_due(now)),
            key=lambda j: j.scheduled_at,
        )[:limit]
        claimed = []
        for job in due:
            job.start_processing(lease_seconds, now)
            claimed.append(job.model_copy(deep=True))
        return claimed

    async def claim(
        self, job_id: str, now: datetime, lease_seconds: float
    ) -> DeliveryJob | None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.QUEUED:
            return None
        job.start_processing(lease_seconds, now)
        return job.model_copy(deep=True)

    async def save(self, job: DeliveryJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def reclaim_expired(self, now: datetime) -> list[DeliveryJob]:
        reclaimed = []
        for job in self._jobs.values():
            if job.status != JobStatus.PROCESSING:
                continue
            if job.lease_expires_at is None or job.lease_expires_at > now:
                continue
            if job.budget_exhausted:
                job.dead_letter("lease expired on final attempt")
            else:
                job.release_lease(now)
            reclaimed.append(job.model_copy(deep=True))
        return reclaimed

    async def list_dead(self, limit: int = 100) -> list[DeliveryJob]:
        dead = [j for j in self._jobs.values() if j.status == JobStatus.DEAD]
        dead.sort(key=lambda j: j.updated_at)
        return [j.model_copy(deep=True) for j in dead[:limit]]

    async def depth(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for job in self._jobs.values():
            if job.status in (JobStatus.QUEUED, JobStatus.PROCESSING):
                bucket = job_bucket(job)
                counts[bucket] = counts.get(bucket, 0) + 1
        return counts

    async def purge_finished(self, older_than: datetime) -> int:
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in FINAL_STATUSES
            and job.status != JobStatus.DEAD
            and job.updated_at < older_than
        ]
        for job_id in stale:
            del self._jobs[job_id]
        self._prune_dedup(datetime.now(timezone.utc))
        return len(stale)

    def _prune_dedup(self, now: datetime) -> None:
        expired = [key for key, (_, until) in self._dedup.items() if until <= now]
        for key in expired:
            del self._dedup[key]

    def all_jobs(self) -> list[DeliveryJob]:
        return [j.model_copy(deep=True) for j in self._jobs.values()]
