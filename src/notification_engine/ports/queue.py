"""Delivery queue persistence and rate-limit counter ports."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..queue.job import DeliveryJob


@runtime_checkable
class IJobStore(Protocol):
    """
    Persistent job store backing the delivery queue.

    Claims are exclusive: a job id returned by :meth:`claim_due` is handed to
    no other caller until its lease expires and :meth:`reclaim_expired` moves
    it back to the due set.
    """

    async def add(self, job: DeliveryJob, dedup_ttl_seconds: int) -> str:
        """Store a new job unless its idempotency key was seen inside the
        dedup window. Returns the id of the stored (or already existing) job."""
        ...

    async def get(self, job_id: str) -> DeliveryJob | None:
        ...

    async def claim_due(
        self, now: datetime, limit: int, lease_seconds: float
    ) -> list[DeliveryJob]:
        """Atomically take up to ``limit`` due jobs and mark them PROCESSING."""
        ...

    async def claim(
        self, job_id: str, now: datetime, lease_seconds: float
    ) -> DeliveryJob | None:
        """Atomically take one specific QUEUED job; None when it is not claimable."""
        ...

    async def save(self, job: DeliveryJob) -> None:
        """Persist a job after a transition (requeue, complete, fail, dead)."""
        ...

    async def reclaim_expired(self, now: datetime) -> list[DeliveryJob]:
        """Release jobs whose lease expired.

        Jobs with attempts left go back to the due set (QUEUED); jobs whose
        last attempt crashed are moved to the dead-letter set (DEAD). Returns
        every reclaimed job.
        """
        ...

    async def list_dead(self, limit: int = 100) -> list[DeliveryJob]:
        ...

    async def depth(self) -> dict[str, int]:
        """Pending (queued or processing) job count per channel."""
        ...

    async def purge_finished(self, older_than: datetime) -> int:
        """Delete succeeded/failed jobs last updated before ``older_than``."""
        ...


@runtime_checkable
class ICounterStore(Protocol):
    """Shared atomic counter store for fixed-window rate limiting."""

    async def increment(self, key: str, window_seconds: int) -> int:
        """Atomically increment ``key`` and return the new value.

        The first increment in a window starts the window's expiry.
        """
        ...

    async def reset(self, key: str) -> None:
        ...
