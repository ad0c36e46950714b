"""In-app inbox notification model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InAppNotification(BaseModel):
    """An entry in a recipient's in-app inbox."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recipient_id: str
    title: str
    body: str
    kind: str = "info"
    category: str = "general"
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    read_at: datetime | None = None

    def mark_read(self) -> InAppNotification:
        return self.model_copy(
            update={"read": True, "read_at": datetime.now(timezone.utc)}
        )

    def to_event_payload(self) -> dict[str, Any]:
        return {
            "notification_id": self.id,
            "title": self.title,
            "body": self.body,
            "type": self.kind,
            "category": self.category,
            "data": self.data,
        }
