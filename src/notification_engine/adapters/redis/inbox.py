"""RedisInAppStore: per-recipient inbox shared by every server process."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...inbox import InAppNotification
from ...ports.stores import IInAppStore
from .scripts import as_text

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("notification_engine.redis.inbox")


class RedisInAppStore(IInAppStore):
    """
    ``inbox:{recipient}`` hash (notification id -> JSON), an
    ``inbox:{recipient}:index`` sorted set scored by creation time and an
    ``inbox:{recipient}:unread`` set. ``SREM`` on the unread set decides which
    caller marks a notification read, so concurrent acks count once.
    """

    def __init__(
        self, redis: Redis, *, prefix: str = "inbox"  # type: ignore[type-arg]
    ) -> None:
        self._redis = redis
        self._prefix = prefix

    def _items(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}"

    def _index(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}:index"

    def _unread(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}:unread"

    async def add(self, notification: InAppNotification) -> None:
        rid = notification.recipient_id
        async with self._redis.pipeline() as pipe:
            pipe.hset(self._items(rid), notification.id, notification.model_dump_json())
            pipe.zadd(self._index(rid), {notification.id: notification.created_at.timestamp()})
            if not notification.read:
                pipe.sadd(self._unread(rid), notification.id)
            await pipe.execute()

    async def mark_read(self, recipient_id: str, notification_id: str) -> bool:
        if not int(await self._redis.srem(self._unread(recipient_id), notification_id)):
            return False
        await self._rewrite_read(recipient_id, [notification_id])
        return True

    async def mark_all_read(self, recipient_id: str) -> int:
        ids = [as_text(i) for i in await self._redis.smembers(self._unread(recipient_id))]
        changed = [i for i in ids if int(await self._redis.srem(self._unread(recipient_id), i))]
        await self._rewrite_read(recipient_id, changed)
        return len(changed)

    async def unread_count(self, recipient_id: str) -> int:
        return int(await self._redis.scard(self._unread(recipient_id)))

    async def list_for(
        self, recipient_id: str, limit: int = 20, offset: int = 0
    ) -> list[InAppNotification]:
        ids = await self._redis.zrevrange(self._index(recipient_id), offset, offset + limit - 1)
        if not ids:
            return []
        values = await self._redis.hmget(self._items(recipient_id), [as_text(i) for i in ids])
        return [InAppNotification.model_validate_json(v) for v in values if v]

    async def _rewrite_read(self, recipient_id: str, ids: list[str]) -> None:
        if not ids:
            return
        key = self._items(recipient_id)
        values = await self._redis.hmget(key, ids)
        updated = {
            n.id: n.mark_read().model_dump_json()
            for n in (InAppNotification.model_validate_json(v) for v in values if v)
        }
        if updated:
            await self._redis.hset(key, mapping=updated)
        else:
            logger.warning("Inbox entries %s for %s vanished before mark-read", ids, recipient_id)
