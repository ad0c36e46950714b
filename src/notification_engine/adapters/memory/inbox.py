"""InMemoryInAppStore: per-recipient inbox for testing."""

from __future__ import annotations

from ...inbox import InAppNotification
from ...ports.stores import IInAppStore


class InMemoryInAppStore(IInAppStore):
    def __init__(self) -> None:
        self._inbox: dict[str, dict[str, InAppNotification]] = {}

    async def add(self, notification: InAppNotification) -> None:
        self._inbox.setdefault(notification.recipient_id, {})[notification.id] = notification

    async def mark_read(self, recipient_id: str, notification_id: str) -> bool:
        box = self._inbox.get(recipient_id, {})
        current = box.get(notification_id)
        if current is None or current.read:
            return False
        box[notification_id] = current.mark_read()
        return True

    async def mark_all_read(self, recipient_id: str) -> int:
        box = self._inbox.get(recipient_id, {})
        unread = [n for n in box.values() if not n.read]
        for n in unread:
            box[n.id] = n.mark_read()
        return len(unread)

    async def unread_count(self, recipient_id: str) -> int:
        return sum(1 for n in self._inbox.get(recipient_id, {}).values() if not n.read)

    async def list_for(
        self, recipient_id: str, limit: int = 20, offset: int = 0
    ) -> list[InAppNotification]:
        items = sorted(
            self._inbox.get(recipient_id, {}).values(),
            key=lambda n: n.created_at,
            reverse=True,
        )
        return items[offset : offset + limit]
