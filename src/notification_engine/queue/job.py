"""DeliveryJob: persistent unit of work for the delivery queue."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..delivery import Channel, RenderedContent
from ..exceptions import JobStateError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle states for a delivery job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEAD = "dead"


class JobKind(str, Enum):
    """What the worker does with the job."""

    DELIVERY = "delivery"
    DEFERRED_REQUEST = "deferred_request"
    DIGEST = "digest"


FINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.DEAD})


def idempotency_key(request_id: str, channel: Channel | str, recipient: str) -> str:
    """Stable dedup key for one (request, channel, recipient) delivery."""
    value = channel.value if isinstance(channel, Channel) else channel
    return f"{request_id}:{value}:{recipient}"


class DeliveryJob(BaseModel):
    """A queued delivery.

    Status transitions::

        QUEUED      -> PROCESSING  (start_processing, consumes one attempt)
        PROCESSING  -> SUCCEEDED   (complete)
        PROCESSING  -> QUEUED      (requeue, retryable failure with backoff)
        PROCESSING  -> FAILED      (fail, terminal failure)
        PROCESSING  -> DEAD        (dead_letter, retry budget exhausted)
        QUEUED      -> DEAD        (dead_letter, lease reclaimed after last attempt)
        DEAD        -> QUEUED      (revive, manual requeue)

    ``attempts`` is the sole source of truth for the retry budget and is
    persisted with the job.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: JobKind = JobKind.DELIVERY
    idempotency_key: str | None = None
    request_id: str | None = None
    channel: Channel | None = None
    recipient_id: str | None = None
    contacts: list[str] = Field(default_factory=list)
    content: dict[str, Any] | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    status: JobStatus = JobStatus.QUEUED
    scheduled_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime | None = None
    lease_expires_at: datetime | None = None
    last_error: str | None = None
    correlation_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator(
        "scheduled_at", "expires_at", "lease_expires_at", "created_at", "updated_at"
    )
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    # -- factories --------------------------------------------------------

    @classmethod
    def for_delivery(
        cls,
        *,
        request_id: str,
        channel: Channel,
        recipient_id: str,
        contacts: list[str],
        content: RenderedContent,
        max_attempts: int = 3,
        scheduled_at: datetime | None = None,
        expires_at: datetime | None = None,
        correlation_id: str | None = None,
    ) -> DeliveryJob:
        return cls(
            kind=JobKind.DELIVERY,
            idempotency_key=idempotency_key(request_id, channel, recipient_id),
            request_id=request_id,
            channel=channel,
            recipient_id=recipient_id,
            contacts=list(contacts),
            content=content.to_dict(),
            max_attempts=max_attempts,
            scheduled_at=scheduled_at or _utcnow(),
            expires_at=expires_at,
            correlation_id=correlation_id,
        )

    @classmethod
    def for_request(
        cls,
        request: dict[str, Any],
        *,
        request_id: str,
        scheduled_at: datetime,
        expires_at: datetime | None = None,
        correlation_id: str | None = None,
        max_attempts: int = 3,
    ) -> DeliveryJob:
        return cls(
            kind=JobKind.DEFERRED_REQUEST,
            idempotency_key=f"{request_id}:deferred",
            request_id=request_id,
            payload=request,
            scheduled_at=scheduled_at,
            expires_at=expires_at,
            correlation_id=correlation_id,
            max_attempts=max_attempts,
        )

    # -- helpers ----------------------------------------------------------

    def _touch(self) -> None:
        self.updated_at = _utcnow()

    @property
    def rendered(self) -> RenderedContent | None:
        return RenderedContent.from_dict(self.content) if self.content else None

    @property
    def budget_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def is_due(self, now: datetime | None = None) -> bool:
        return self.status == JobStatus.QUEUED and self.scheduled_at <= (now or _utcnow())

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or _utcnow())

    # -- transitions ------------------------------------------------------

    def start_processing(self, lease_seconds: float, now: datetime | None = None) -> None:
        """QUEUED -> PROCESSING; consumes one attempt and takes a lease."""
        if self.status != JobStatus.QUEUED:
            raise JobStateError(f"Cannot start job in {self.status.value} state")
        current = now or _utcnow()
        self.status = JobStatus.PROCESSING
        self.attempts += 1
        self.lease_expires_at = current + timedelta(seconds=lease_seconds)
        self._touch()

    def complete(self) -> None:
        """PROCESSING -> SUCCEEDED."""
        if self.status != JobStatus.PROCESSING:
            raise JobStateError(f"Cannot complete job in {self.status.value} state")
        self.status = JobStatus.SUCCEEDED
        self.lease_expires_at = None
        self.last_error = None
        self._touch()

    def requeue(self, error: str, run_at: datetime) -> None:
        """PROCESSING -> QUEUED with a new due time."""
        if self.status != JobStatus.PROCESSING:
            raise JobStateError(f"Cannot requeue job in {self.status.value} state")
        if self.budget_exhausted:
            raise JobStateError(f"Max attempts ({self.max_attempts}) exhausted")
        self.status = JobStatus.QUEUED
        self.scheduled_at = run_at
        self.lease_expires_at = None
        self.last_error = error
        self._touch()

    def fail(self, error: str) -> None:
        """PROCESSING -> FAILED (terminal, never retried)."""
        if self.status != JobStatus.PROCESSING:
            raise JobStateError(f"Cannot fail job in {self.status.value} state")
        self.status = JobStatus.FAILED
        self.lease_expires_at = None
        self.last_error = error
        self._touch()

    def dead_letter(self, error: str) -> None:
        """PROCESSING | QUEUED -> DEAD."""
        if self.status in FINAL_STATUSES:
            raise JobStateError(f"Cannot dead-letter job in {self.status.value} state")
        self.status = JobStatus.DEAD
        self.lease_expires_at = None
        self.last_error = error
        self._touch()

    def release_lease(self, now: datetime | None = None) -> None:
        """PROCESSING -> QUEUED after a lease expired (worker crashed)."""
        if self.status != JobStatus.PROCESSING:
            raise JobStateError(f"Cannot release job in {self.status.value} state")
        self.status = JobStatus.QUEUED
        self.scheduled_at = now or _utcnow()
        self.lease_expires_at = None
        self._touch()

    def revive(self) -> None:
        """DEAD -> QUEUED with a fresh attempt budget (manual inspection done)."""
        if self.status != JobStatus.DEAD:
            raise JobStateError(f"Cannot revive job in {self.status.value} state")
        self.status = JobStatus.QUEUED
        self.attempts = 0
        self.scheduled_at = _utcnow()
        self._touch()
