"""DeliveryWorkerPool: fixed-size pool of async workers draining the queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..health import HealthRegistry
    from .queue import DeliveryQueue, JobOutcome

logger = logging.getLogger("notification_engine.queue")


class DeliveryWorkerPool:
    """
    ``size`` workers each claim one due job at a time, so the pool size caps
    concurrent provider calls. A sweeper task reclaims expired leases, refreshes
    the queue-depth gauge and purges old finished jobs.

    Uses trigger + polling fallback: call :meth:`trigger` to wake idle workers
    immediately (e.g. after an enqueue); otherwise they poll every
    ``poll_interval`` seconds.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        *,
        size: int = 4,
        poll_interval: float = 1.0,
        sweep_interval: float = 15.0,
        health: HealthRegistry | None = None,
        name: str = "delivery-worker",
    ) -> None:
        if size < 1:
            raise ValueError("size must be >= 1")
        self._queue = queue
        self.size = size
        self._poll_interval = poll_interval
        self._sweep_interval = sweep_interval
        self._health = health
        self._name = name
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self._trigger = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    def trigger(self) -> None:
        """Wake the workers immediately."""
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"{self._name}-{i}")
            for i in range(self.size)
        ]
        self._tasks.append(asyncio.create_task(self._sweep_loop(), name=f"{self._name}-sweeper"))
        logger.info(
            "DeliveryWorkerPool started (size=%d, poll_interval=%.1fs)",
            self.size,
            self._poll_interval,
        )

    async def stop(self) -> None:
        self._running = False
        self._trigger.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(task, timeout=5.0)
        self._tasks = []
        if self._health is not None:
            for i in range(self.size):
                self._health.forget(f"{self._name}-{i}")
        logger.info("DeliveryWorkerPool stopped")

    async def run_once(self) -> list[JobOutcome]:
        """Reclaim expired leases, then process one batch of due jobs
        concurrently (useful in tests)."""
        await self._queue.reclaim_expired()
        jobs = await self._queue.claim_due(self.size)
        if not jobs:
            return []
        return list(await asyncio.gather(*(self._queue.process(job) for job in jobs)))

    async def drain(self, max_rounds: int = 100) -> int:
        """Run batches until nothing is due; returns the number of jobs processed."""
        processed = 0
        for _ in range(max_rounds):
            outcomes = await self.run_once()
            if not outcomes:
                break
            processed += len(outcomes)
        return processed

    async def _worker_loop(self, index: int) -> None:
        worker_name = f"{self._name}-{index}"
        while self._running:
            if self._health is not None:
                self._health.heartbeat(worker_name)
            try:
                jobs = await self._queue.claim_due(1)
            except Exception:
                logger.exception("%s: claim failed", worker_name)
                jobs = []
            if not jobs:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._trigger.wait(), timeout=self._poll_interval)
                self._trigger.clear()
                continue
            try:
                await self._queue.process(jobs[0])
            except Exception:
                # The lease expires and the sweeper re-queues the job.
                logger.exception("%s: job %s crashed", worker_name, jobs[0].id)

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._sweep_interval)
            try:
                reclaimed = await self._queue.reclaim_expired()
                if reclaimed:
                    self.trigger()
                await self._queue.depth()
                await self._queue.purge_completed()
            except Exception:
                logger.exception("DeliveryWorkerPool sweep error")
