"""Delivery types: channels, priorities, rendered content and channel outcomes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    """Supported notification channels (closed set)."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


class Priority(str, Enum):
    """Request priority. ``HIGH`` bypasses quiet hours."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class NotificationStatus(str, Enum):
    """Overall status of a notification request."""

    SENT = "sent"
    PARTIAL = "partial"
    FAILED = "failed"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class RenderedContent:
    """Immutable channel-specific content ready for delivery.

    ``body_text`` is always set. Email also carries ``subject`` and
    ``body_html``; push and in-app carry ``title``; in-app carries ``kind``.
    """

    channel: Channel
    body_text: str
    subject: str | None = None
    body_html: str | None = None
    title: str | None = None
    kind: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "body_text": self.body_text,
            "subject": self.subject,
            "body_html": self.body_html,
            "title": self.title,
            "kind": self.kind,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RenderedContent:
        return cls(
            channel=Channel(raw["channel"]),
            body_text=raw["body_text"],
            subject=raw.get("subject"),
            body_html=raw.get("body_html"),
            title=raw.get("title"),
            kind=raw.get("kind"),
            data=dict(raw.get("data") or {}),
        )


@dataclass(frozen=True)
class ChannelOutcome:
    """Immutable, provider-neutral result of one send attempt.

    ``retryable`` is only meaningful for failures: it tells the delivery queue
    whether the job may re-enter the queue with backoff.
    """

    channel: Channel
    recipient: str
    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    retryable: bool = False
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.completed_at is None:
            object.__setattr__(self, "completed_at", datetime.now(timezone.utc))

    @classmethod
    def sent(
        cls,
        recipient: str,
        channel: Channel,
        provider_message_id: str | None = None,
    ) -> ChannelOutcome:
        """Create a successful outcome."""
        return cls(
            channel=channel,
            recipient=recipient,
            success=True,
            provider_message_id=provider_message_id,
        )

    @classmethod
    def failed(
        cls,
        recipient: str,
        channel: Channel,
        error: str,
        *,
        retryable: bool = False,
    ) -> ChannelOutcome:
        """Create a failed outcome, classified as retryable or terminal."""
        return cls(
            channel=channel,
            recipient=recipient,
            success=False,
            error=error,
            retryable=retryable,
        )

    @property
    def terminal(self) -> bool:
        return not self.success and not self.retryable
