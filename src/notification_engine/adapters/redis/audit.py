"""RedisAuditStore: append-only audit log shared by every server process."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ...models import AuditRecord
from ...ports.stores import IAuditStore

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("notification_engine.redis.audit")


class RedisAuditStore(IAuditStore):
    """
    One ``audit:{recipient}`` sorted set per recipient, members are record
    JSON scored by creation time. With ``retention`` set, each append trims
    that recipient's entries older than the window.
    """

    def __init__(
        self,
        redis: Redis,  # type: ignore[type-arg]
        *,
        prefix: str = "audit",
        retention: timedelta | None = None,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._retention = retention

    def _key(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}"

    async def append(self, record: AuditRecord) -> None:
        if not record.recipient_ids:
            logger.debug("Audit record %s has no recipients; not indexed", record.request_id)
            return
        payload = record.model_dump_json()
        score = record.created_at.timestamp()
        async with self._redis.pipeline() as pipe:
            for recipient_id in dict.fromkeys(record.recipient_ids):
                key = self._key(recipient_id)
                pipe.zadd(key, {payload: score})
                if self._retention is not None:
                    cutoff = datetime.now(timezone.utc) - self._retention
                    pipe.zremrangebyscore(key, "-inf", f"({cutoff.timestamp()}")
            await pipe.execute()

    async def query(
        self,
        recipient_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AuditRecord]:
        low = since.timestamp() if since is not None else "-inf"
        high = f"({until.timestamp()}" if until is not None else "+inf"
        values = await self._redis.zrangebyscore(self._key(recipient_id), low, high)
        return [AuditRecord.model_validate_json(v) for v in values]
