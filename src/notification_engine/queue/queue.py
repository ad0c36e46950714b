"""DeliveryQueue: leased, retrying, deduplicating job queue over an IJobStore."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, cast

from ..correlation import get_correlation_id, set_correlation_id
from ..delivery import ChannelOutcome
from ..instrumentation import get_hook_registry
from .dead_letter import DeadLetterHandler
from .job import JobKind, JobStatus
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from ..delivery import Channel
    from ..observability.metrics import NotificationMetrics
    from ..ports.channel import IChannelAdapter
    from ..ports.queue import IJobStore
    from .job import DeliveryJob

logger = logging.getLogger("notification_engine.queue")


@dataclass(frozen=True)
class QueueConfig:
    """Lease, dedup window and retention for finished jobs."""

    lease_seconds: float = 30.0
    dedup_ttl_seconds: int = 24 * 3600
    retention_seconds: int = 7 * 24 * 3600


@dataclass(frozen=True)
class JobOutcome:
    """Result of one processing pass over a job."""

    job_id: str
    status: JobStatus
    outcomes: tuple[ChannelOutcome, ...] = ()
    error: str | None = None
    duplicate: bool = False
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def retrying(self) -> bool:
        """The job went back to the queue for another attempt."""
        return self.status in (JobStatus.QUEUED, JobStatus.PROCESSING)

    @property
    def provider_message_id(self) -> str | None:
        for outcome in self.outcomes:
            if outcome.success and outcome.provider_message_id:
                return outcome.provider_message_id
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _join_errors(outcomes: list[ChannelOutcome]) -> str:
    return "; ".join(sorted({o.error or "unknown error" for o in outcomes}))


class DeliveryQueue:
    """
    At-least-once delivery queue.

    A job is complete only after its adapter reports success. Claims take a
    lease; a worker that dies mid-job leaves the lease to expire and
    :meth:`reclaim_expired` puts the job back. Only retryable failures
    re-enter the queue, with exponential backoff from :class:`RetryPolicy`;
    exhausting the attempt budget moves the job to the dead-letter set.

    Non-delivery jobs (deferred requests, digests) run through handlers
    registered with :meth:`register_handler`; a handler exception counts as a
    retryable failure.
    """

    def __init__(
        self,
        store: IJobStore,
        adapters: Mapping[Channel, IChannelAdapter],
        *,
        retry_policy: RetryPolicy | None = None,
        dead_letter: DeadLetterHandler | None = None,
        config: QueueConfig | None = None,
        metrics: NotificationMetrics | None = None,
    ) -> None:
        self._store = store
        self._adapters = dict(adapters)
        self.retry_policy = retry_policy or RetryPolicy()
        self._dead_letter = dead_letter or DeadLetterHandler()
        self.config = config or QueueConfig()
        self._metrics = metrics
        self._handlers: dict[JobKind, Callable[[DeliveryJob], Awaitable[None]]] = {}

    @property
    def max_attempts(self) -> int:
        return self.retry_policy.max_attempts

    def register_handler(
        self, kind: JobKind, handler: Callable[[DeliveryJob], Awaitable[None]]
    ) -> None:
        if kind == JobKind.DELIVERY:
            raise ValueError("Delivery jobs are processed by channel adapters")
        self._handlers[kind] = handler

    def adapter_for(self, channel: Channel) -> IChannelAdapter | None:
        return self._adapters.get(channel)

    # -- producing --------------------------------------------------------

    async def enqueue(self, job: DeliveryJob) -> str:
        """Store ``job``; a duplicate idempotency key inside the dedup window
        returns the existing job id and stores nothing."""
        job_id = await self._store.add(job, self.config.dedup_ttl_seconds)
        if job_id != job.id:
            logger.info(
                "Duplicate enqueue for key %s dropped (existing job %s)",
                job.idempotency_key,
                job_id,
            )
        else:
            logger.debug("Enqueued job %s (%s) due %s", job.id, job.kind.value, job.scheduled_at)
        return job_id

    async def dispatch(self, job: DeliveryJob) -> JobOutcome:
        """Enqueue ``job`` and run its first attempt immediately.

        Retryable failures stay queued for the worker pool. A duplicate
        enqueue runs nothing and reports the existing job's state: a failed
        or dead-lettered original stays a failure, one still in flight
        reports as retrying.
        """
        job_id = await self.enqueue(job)
        if job_id != job.id:
            existing = await self._store.get(job_id)
            if existing is None:
                return JobOutcome(
                    job_id=job_id,
                    status=JobStatus.QUEUED,
                    error=f"duplicate of job {job_id}, which is no longer stored",
                    duplicate=True,
                )
            return JobOutcome(
                job_id=job_id,
                status=existing.status,
                error=existing.last_error,
                duplicate=True,
                attempts=existing.attempts,
            )

        claimed = await self._store.claim(job_id, _utcnow(), self.config.lease_seconds)
        if claimed is None:
            # A worker claimed it between enqueue and claim.
            return JobOutcome(job_id=job_id, status=JobStatus.PROCESSING)
        return await self.process(claimed)

    # -- consuming --------------------------------------------------------

    async def claim_due(self, limit: int) -> list[DeliveryJob]:
        return await self._store.claim_due(_utcnow(), limit, self.config.lease_seconds)

    async def process(self, job: DeliveryJob) -> JobOutcome:
        """Run one attempt of a claimed (PROCESSING) job and persist the result."""
        if job.correlation_id:
            set_correlation_id(job.correlation_id)
        registry = get_hook_registry()
        return cast(
            "JobOutcome",
            await registry.execute_all(
                "queue.process",
                {
                    "job.id": job.id,
                    "job.kind": job.kind.value,
                    "job.channel": job.channel.value if job.channel else None,
                    "job.attempt": job.attempts,
                    "correlation_id": job.correlation_id or get_correlation_id(),
                },
                lambda: self._process(job),
            ),
        )

    async def _process(self, job: DeliveryJob) -> JobOutcome:
        if job.is_expired():
            job.fail("expired")
            await self._store.save(job)
            logger.info("Job %s expired before attempt %d", job.id, job.attempts)
            return self._outcome(job)

        if job.kind == JobKind.DELIVERY:
            outcomes = await self._deliver(job)
            if outcomes is None:
                return self._outcome(job)
            await self._settle(job, outcomes)
            return self._outcome(job, outcomes)

        handler = self._handlers.get(job.kind)
        if handler is None:
            job.fail(f"no handler for {job.kind.value}")
            await self._store.save(job)
            return self._outcome(job)
        try:
            await handler(job)
        except Exception as e:  # noqa: BLE001
            logger.warning("Job %s handler failed (attempt %d): %s", job.id, job.attempts, e)
            await self._retry_or_dead_letter(job, str(e))
        else:
            job.complete()
            await self._store.save(job)
        return self._outcome(job)

    async def _deliver(self, job: DeliveryJob) -> list[ChannelOutcome] | None:
        adapter = self._adapters.get(job.channel) if job.channel else None
        content = job.rendered
        if adapter is None or content is None or not job.contacts:
            reason = "no adapter" if adapter is None else "no content or contact"
            job.fail(reason)
            await self._store.save(job)
            logger.error("Job %s cannot be delivered: %s", job.id, reason)
            return None

        options: dict[str, Any] = {
            "recipient_id": job.recipient_id,
            "request_id": job.request_id,
            "job_id": job.id,
            **job.payload,
        }
        if len(job.contacts) == 1:
            return [await adapter.send(job.contacts[0], content, options)]
        return await adapter.send_batch(list(job.contacts), content, options)

    async def _settle(self, job: DeliveryJob, outcomes: list[ChannelOutcome]) -> None:
        retryable = [o for o in outcomes if not o.success and o.retryable]
        terminal = [o for o in outcomes if o.terminal]
        succeeded = [o for o in outcomes if o.success]
        channel = job.channel.value if job.channel else job.kind.value

        if self._metrics is not None:
            for outcome in outcomes:
                self._metrics.record_delivery(
                    channel, outcome.success, retryable=outcome.retryable
                )

        if retryable:
            # Only the failed subset goes around again.
            job.contacts = [o.recipient for o in retryable]
            await self._retry_or_dead_letter(job, _join_errors(retryable))
            return
        if succeeded:
            job.complete()
            if terminal:
                logger.warning(
                    "Job %s delivered to %d of %d contacts: %s",
                    job.id,
                    len(succeeded),
                    len(outcomes),
                    _join_errors(terminal),
                )
        else:
            job.fail(_join_errors(terminal))
            logger.warning("Job %s failed terminally: %s", job.id, job.last_error)
        await self._store.save(job)

    async def _retry_or_dead_letter(self, job: DeliveryJob, error: str) -> None:
        if job.budget_exhausted:
            await self._dead_letter.route(job, error)
            if self._metrics is not None:
                self._metrics.record_dead_letter(
                    job.channel.value if job.channel else job.kind.value
                )
        else:
            run_at = self.retry_policy.next_run_at(job.attempts)
            job.requeue(error, run_at)
            logger.info(
                "Job %s attempt %d/%d failed (%s), retry at %s",
                job.id,
                job.attempts,
                job.max_attempts,
                error,
                run_at.isoformat(),
            )
        await self._store.save(job)

    def _outcome(
        self, job: DeliveryJob, outcomes: list[ChannelOutcome] | None = None
    ) -> JobOutcome:
        return JobOutcome(
            job_id=job.id,
            status=job.status,
            outcomes=tuple(outcomes or ()),
            error=job.last_error,
            attempts=job.attempts,
        )

    # -- maintenance ------------------------------------------------------

    async def reclaim_expired(self) -> list[DeliveryJob]:
        """Release expired leases (sweeper)."""
        reclaimed = await self._store.reclaim_expired(_utcnow())
        for job in reclaimed:
            if job.status == JobStatus.DEAD:
                logger.warning("Job %s dead-lettered: lease expired on final attempt", job.id)
                if self._metrics is not None:
                    self._metrics.record_dead_letter(
                        job.channel.value if job.channel else job.kind.value
                    )
            else:
                logger.info("Job %s lease expired, re-queued", job.id)
        return reclaimed

    async def dead_letters(self, limit: int = 100) -> list[DeliveryJob]:
        return await self._store.list_dead(limit)

    async def requeue_dead(self, job_ids: list[str] | None = None) -> int:
        """Revive dead jobs (all of them, or the given ids) with a fresh budget."""
        if job_ids is None:
            candidates = await self._store.list_dead(limit=10_000)
        else:
            candidates = [j for j in [await self._store.get(i) for i in job_ids] if j]
        revived = 0
        for job in candidates:
            if job.status != JobStatus.DEAD:
                continue
            job.revive()
            await self._store.save(job)
            revived += 1
        if revived:
            logger.info("Re-queued %d dead-lettered jobs", revived)
        return revived

    async def depth(self) -> dict[str, int]:
        depth = await self._store.depth()
        if self._metrics is not None:
            self._metrics.set_queue_depth(depth)
        return depth

    async def purge_completed(self, older_than: timedelta | None = None) -> int:
        cutoff = _utcnow() - (older_than or timedelta(seconds=self.config.retention_seconds))
        purged = await self._store.purge_finished(cutoff)
        if purged:
            logger.info("Purged %d finished jobs", purged)
        return purged
