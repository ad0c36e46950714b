"""Realtime wire events and cross-process bus messages."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

NOTIFICATION_NEW = "notification:new"
NOTIFICATION_READ = "notification:read"
UNREAD_COUNT = "notifications:unread-count"
PREFERENCES_UPDATED = "preferences:updated"
TYPING = "typing"
PRESENCE_UPDATE = "presence:update"

# Never buffered for offline recipients.
EPHEMERAL_EVENTS: frozenset[str] = frozenset({TYPING, PRESENCE_UPDATE})


class RealtimeEvent(BaseModel):
    """One event pushed to client sockets."""

    model_config = ConfigDict(frozen=True)

    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ephemeral(self) -> bool:
        return self.name in EPHEMERAL_EVENTS

    def wire_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            **self.payload,
        }


class BusMessage(BaseModel):
    """Envelope broadcast between server processes.

    ``recipient_id`` of None means "every locally connected socket".
    ``origin`` is the publishing process id; receivers skip their own echo.
    """

    model_config = ConfigDict(frozen=True)

    origin: str
    event: RealtimeEvent
    recipient_id: str | None = None
    action: str = "deliver"
