"""Request, result and audit models exchanged with callers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .delivery import Channel, NotificationStatus, Priority
from .exceptions import InvalidRequestError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationRequest(BaseModel):
    """Immutable delivery request.

    Either ``recipient_ids`` or ``group_id`` selects recipients. Shape rules
    (non-empty selector, non-empty channels, non-blank template) are enforced
    by :meth:`validate_shape`, which the orchestrator calls before any work.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recipient_ids: tuple[str, ...] = ()
    group_id: str | None = None
    channels: tuple[Channel, ...] = ()
    template: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    category: str = "general"
    scheduled_at: datetime | None = None
    expires_at: datetime | None = None
    language: str | None = None
    correlation_id: str | None = None

    @field_validator("scheduled_at", "expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Naive timestamps are read as UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def parse(cls, raw: dict[str, Any]) -> NotificationRequest:
        """Build a request from untrusted input, mapping type errors to
        :class:`InvalidRequestError`."""
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as exc:
            errors: dict[str, list[str]] = {}
            for err in exc.errors():
                loc = ".".join(str(p) for p in err["loc"]) or "__root__"
                errors.setdefault(loc, []).append(err["msg"])
            raise InvalidRequestError(errors) from exc

    def validate_shape(self) -> None:
        """Raise :class:`InvalidRequestError` when selector, channels or
        template are missing."""
        errors: dict[str, list[str]] = {}
        if not self.recipient_ids and not self.group_id:
            errors["recipients"] = ["recipient_ids or group_id is required"]
        if any(not r.strip() for r in self.recipient_ids):
            errors.setdefault("recipients", []).append("recipient ids must be non-blank")
        if not self.channels:
            errors["channels"] = ["at least one channel is required"]
        if not self.template.strip():
            errors["template"] = ["template name is required"]
        if errors:
            raise InvalidRequestError(errors)

    def is_scheduled(self, now: datetime | None = None) -> bool:
        return self.scheduled_at is not None and self.scheduled_at > (now or _utcnow())

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or _utcnow())


class ChannelResult(BaseModel):
    """Aggregated outcome of one channel across the request's recipients.

    ``success`` is true when no recipient failed; deliveries held back by
    quiet hours count as ``deferred``. ``retryable`` marks failures that are
    queued for another attempt.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message_id: str | None = None
    error: str | None = None
    retryable: bool = False
    sent: int = 0
    deferred: int = 0
    failed: int = 0
    failed_recipients: tuple[str, ...] = ()


class NotificationResult(BaseModel):
    """Immutable result of ``send_notification``."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: NotificationStatus
    channels: dict[Channel, ChannelResult] = Field(default_factory=dict)
    reason: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def failed_channels(self) -> list[Channel]:
        """Channels a caller may offer to retry."""
        return [c for c, r in self.channels.items() if not r.success]

    @classmethod
    def rejected(cls, request_id: str, reason: str) -> NotificationResult:
        return cls(id=request_id, status=NotificationStatus.FAILED, reason=reason)


class GroupSendResult(BaseModel):
    """Aggregate of a group send: per-member results and collected errors."""

    model_config = ConfigDict(frozen=True)

    group_id: str
    status: NotificationStatus
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: tuple[NotificationResult, ...] = ()
    errors: dict[str, str] = Field(default_factory=dict)


class AuditRecord(BaseModel):
    """Append-only audit entry: request summary plus per-channel outcome."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_id: str
    template: str
    category: str
    priority: Priority
    recipient_ids: tuple[str, ...]
    requested_channels: tuple[Channel, ...]
    result: NotificationResult
    correlation_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def for_result(
        cls,
        request: NotificationRequest,
        recipient_ids: list[str] | tuple[str, ...],
        result: NotificationResult,
        correlation_id: str | None = None,
    ) -> AuditRecord:
        return cls(
            request_id=request.request_id,
            template=request.template,
            category=request.category,
            priority=request.priority,
            recipient_ids=tuple(recipient_ids),
            requested_channels=request.channels,
            result=result,
            correlation_id=correlation_id or request.correlation_id,
        )
