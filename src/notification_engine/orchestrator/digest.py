"""Digest: periodic email summarising a recipient's recent notifications."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from ..delivery import Channel, NotificationStatus, Priority
from ..models import NotificationRequest
from ..preferences.model import DEFAULT_TIMEZONE, DigestPeriod
from ..queue.job import DeliveryJob, JobKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..models import NotificationResult
    from ..ports.stores import IAuditStore
    from ..preferences.resolver import PreferenceResolver
    from ..queue.queue import DeliveryQueue

logger = logging.getLogger("notification_engine.digest")

DIGEST_CATEGORY = "digest"
DIGEST_HOUR = 9
PERIOD_LENGTH: dict[DigestPeriod, timedelta] = {
    DigestPeriod.DAILY: timedelta(days=1),
    DigestPeriod.WEEKLY: timedelta(days=7),
}


def digest_template(period: DigestPeriod) -> str:
    return f"digest_{period.value}"


def next_digest_time(
    period: DigestPeriod,
    now: datetime | None = None,
    *,
    hour: int = DIGEST_HOUR,
    tz: str = DEFAULT_TIMEZONE,
) -> datetime:
    """Next run: daily at ``hour`` local time, weekly on Monday at ``hour``."""
    if period not in PERIOD_LENGTH:
        raise ValueError(f"No schedule for digest period {period.value}")
    zone = ZoneInfo(tz)
    local = (now or datetime.now(timezone.utc)).astimezone(zone)
    candidate = datetime.combine(local.date(), time(hour), tzinfo=zone)
    if period == DigestPeriod.WEEKLY:
        candidate += timedelta(days=(0 - candidate.weekday()) % 7)
    step = PERIOD_LENGTH[period]
    while candidate <= local:
        candidate += step
    return candidate.astimezone(timezone.utc)


@dataclass(frozen=True)
class Digest:
    recipient_id: str
    period: DigestPeriod
    since: datetime
    until: datetime
    categories: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(items) for items in self.categories.values())

    def template_data(self) -> dict[str, Any]:
        return {
            "period": self.period.value,
            "since": self.since.isoformat(),
            "until": self.until.isoformat(),
            "total": self.total,
            "categories": [
                {"name": name, "count": len(items), "items": items}
                for name, items in sorted(self.categories.items())
            ],
        }


class DigestService:
    """
    Builds digests from the audit log and delivers them as one email per
    subscribed recipient through the orchestrator.

    Scheduling enqueues one DIGEST job per recipient whose digest preference
    matches the period; the queue runs :meth:`handle` at fire time.
    """

    def __init__(
        self,
        preferences: PreferenceResolver,
        audit: IAuditStore,
        queue: DeliveryQueue,
        send: Callable[[NotificationRequest], Awaitable[NotificationResult]],
    ) -> None:
        self._preferences = preferences
        self._audit = audit
        self._queue = queue
        self._send = send
        queue.register_handler(JobKind.DIGEST, self.handle)

    async def create_digest(
        self,
        recipient_id: str,
        period: DigestPeriod,
        now: datetime | None = None,
    ) -> Digest:
        until = now or datetime.now(timezone.utc)
        since = until - PERIOD_LENGTH[period]
        records = await self._audit.query(recipient_id, since=since, until=until)
        categories: dict[str, list[dict[str, Any]]] = {}
        for record in records:
            if record.category == DIGEST_CATEGORY:
                continue
            if record.result.status in (NotificationStatus.FAILED, NotificationStatus.SCHEDULED):
                continue
            categories.setdefault(record.category, []).append(
                {
                    "request_id": record.request_id,
                    "template": record.template,
                    "status": record.result.status.value,
                    "created_at": record.created_at.isoformat(),
                }
            )
        return Digest(recipient_id, period, since, until, categories)

    async def schedule_digest(self, period: DigestPeriod, at: datetime | None = None) -> int:
        """Enqueue one digest job per subscribed recipient; returns how many were new."""
        if period not in PERIOD_LENGTH:
            raise ValueError(f"Cannot schedule a digest for period {period.value}")
        run_at = at or datetime.now(timezone.utc)
        recipients = await self._preferences.recipients_for_digest(period)
        enqueued = 0
        for recipient_id in recipients:
            job = DeliveryJob(
                kind=JobKind.DIGEST,
                idempotency_key=f"digest:{period.value}:{recipient_id}:{run_at.date().isoformat()}",
                recipient_id=recipient_id,
                payload={"recipient_id": recipient_id, "period": period.value},
                scheduled_at=run_at,
                max_attempts=self._queue.max_attempts,
            )
            if await self._queue.enqueue(job) == job.id:
                enqueued += 1
        logger.info(
            "Scheduled %s digest for %d of %d recipients", period.value, enqueued, len(recipients)
        )
        return enqueued

    async def handle(self, job: DeliveryJob) -> None:
        recipient_id = str(job.payload["recipient_id"])
        period = DigestPeriod(job.payload["period"])
        digest = await self.create_digest(recipient_id, period)
        if digest.total == 0:
            logger.info("No activity for %s digest of %s, skipped", period.value, recipient_id)
            return
        await self._send(
            NotificationRequest(
                request_id=job.id,
                recipient_ids=(recipient_id,),
                channels=(Channel.EMAIL,),
                template=digest_template(period),
                data=digest.template_data(),
                priority=Priority.LOW,
                category=DIGEST_CATEGORY,
                correlation_id=job.correlation_id,
            )
        )


class DigestScheduler:
    """Background worker enqueueing daily and weekly digests at their run times."""

    def __init__(
        self,
        service: DigestService,
        *,
        periods: tuple[DigestPeriod, ...] = (DigestPeriod.DAILY, DigestPeriod.WEEKLY),
        hour: int = DIGEST_HOUR,
        tz: str = DEFAULT_TIMEZONE,
    ) -> None:
        self._service = service
        self._periods = periods
        self._hour = hour
        self._tz = tz
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [asyncio.create_task(self._run_loop(p)) for p in self._periods]
        logger.info("DigestScheduler started for %s", ", ".join(p.value for p in self._periods))

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(task, timeout=5.0)
        self._tasks = []
        logger.info("DigestScheduler stopped")

    async def _run_loop(self, period: DigestPeriod) -> None:
        while self._running:
            now = datetime.now(timezone.utc)
            run_at = next_digest_time(period, now, hour=self._hour, tz=self._tz)
            await asyncio.sleep((run_at - now).total_seconds())
            try:
                await self._service.schedule_digest(period, at=run_at)
            except Exception:
                logger.exception("DigestScheduler failed to schedule %s digest", period.value)
