"""Redis realtime backends: shared connection registry, pending lists, pub/sub bus."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from ...ports.realtime import IConnectionStore, IPendingStore, IRealtimeBus
from ...realtime.events import BusMessage, RealtimeEvent
from .scripts import as_text

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger("notification_engine.redis.realtime")

ONLINE_SET = "online:users"


class RedisConnectionStore(IConnectionStore):
    """
    ``user:sockets:{recipient}`` hash (socket id -> process id) with a TTL,
    plus the ``online:users`` set. The TTL is refreshed by heartbeats, so
    sockets of a crashed process age out.
    """

    def __init__(
        self, redis: Redis, *, prefix: str = "user:sockets"  # type: ignore[type-arg]
    ) -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}"

    async def add(
        self, recipient_id: str, socket_id: str, process_id: str, ttl_seconds: int
    ) -> None:
        async with self._redis.pipeline() as pipe:
            pipe.hset(self._key(recipient_id), socket_id, process_id)
            pipe.expire(self._key(recipient_id), ttl_seconds)
            pipe.sadd(ONLINE_SET, recipient_id)
            await pipe.execute()

    async def remove(self, recipient_id: str, socket_id: str) -> int:
        await self._redis.hdel(self._key(recipient_id), socket_id)
        remaining = int(await self._redis.hlen(self._key(recipient_id)))
        if remaining == 0:
            await self._redis.srem(ONLINE_SET, recipient_id)
        return remaining

    async def count(self, recipient_id: str) -> int:
        return int(await self._redis.hlen(self._key(recipient_id)))

    async def refresh(self, recipient_id: str, ttl_seconds: int) -> None:
        await self._redis.expire(self._key(recipient_id), ttl_seconds)

    async def online_recipients(self) -> set[str]:
        members = await self._redis.smembers(ONLINE_SET)
        return {as_text(m) for m in members}


class RedisPendingStore(IPendingStore):
    """``pending:{recipient}`` list: LPUSH newest, LTRIM to the cap, EXPIRE."""

    def __init__(
        self, redis: Redis, *, prefix: str = "pending"  # type: ignore[type-arg]
    ) -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}"

    async def push(
        self, recipient_id: str, event: RealtimeEvent, cap: int, ttl_seconds: int
    ) -> None:
        key = self._key(recipient_id)
        async with self._redis.pipeline() as pipe:
            pipe.lpush(key, event.model_dump_json())
            pipe.ltrim(key, 0, cap - 1)
            pipe.expire(key, ttl_seconds)
            await pipe.execute()

    async def drain(self, recipient_id: str) -> list[RealtimeEvent]:
        key = self._key(recipient_id)
        async with self._redis.pipeline() as pipe:
            pipe.lrange(key, 0, -1)
            pipe.delete(key)
            raw, _ = await pipe.execute()
        # Stored newest first.
        return [RealtimeEvent.model_validate_json(item) for item in reversed(raw or [])]


class RedisRealtimeBus(IRealtimeBus):
    """Pub/sub bus on one Redis channel; a reader task dispatches messages."""

    def __init__(
        self, redis: Redis, *, channel: str = "notifications:realtime"  # type: ignore[type-arg]
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._pubsub: PubSub | None = None
        self._reader: asyncio.Task[None] | None = None
        self._handlers: list[Callable[[BusMessage], Awaitable[None]]] = []

    async def publish(self, message: BusMessage) -> None:
        await self._redis.publish(self._channel, message.model_dump_json())

    async def subscribe(self, handler: Callable[[BusMessage], Awaitable[None]]) -> None:
        self._handlers.append(handler)
        if self._pubsub is None:
            pubsub = self._redis.pubsub()
            await pubsub.subscribe(self._channel)
            self._pubsub = pubsub
            self._reader = asyncio.create_task(self._read_loop(pubsub))

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._reader, timeout=5.0)
            self._reader = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
            self._pubsub = None
        self._handlers.clear()

    async def _read_loop(self, pubsub: PubSub) -> None:
        while True:
            try:
                raw = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                logger.warning("Realtime bus read failed: %s", e)
                await asyncio.sleep(1.0)
                continue
            if raw is None or raw.get("type") != "message":
                continue
            await self.dispatch(raw["data"])

    async def dispatch(self, data: bytes | str) -> None:
        """Decode one bus payload and hand it to every handler."""
        try:
            message = BusMessage.model_validate_json(data)
        except ValueError as e:
            logger.warning("Dropping malformed bus message: %s", e)
            return
        for handler in list(self._handlers):
            try:
                await handler(message)
            except Exception:
                logger.exception("Realtime bus handler failed for %s", message.event.name)
