"""Redis preference stores: the durable record store and a read-through cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...ports.stores import IPreferenceStore
from ...preferences.model import Preferences
from .scripts import as_text

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import Pipeline

    from ...preferences.model import DigestPeriod

logger = logging.getLogger("notification_engine.redis.preferences")


class CachedPreferenceStore(IPreferenceStore):
    """
    Wraps an :class:`IPreferenceStore` with a ``preferences:{id}`` cache.

    Writes go to the backing store first and then replace the cache entry.
    Cache failures are logged and fall through to the backing store.
    """

    def __init__(
        self,
        backing: IPreferenceStore,
        redis: Redis,  # type: ignore[type-arg]
        *,
        ttl_seconds: int = 3600,
        prefix: str = "preferences",
    ) -> None:
        self._backing = backing
        self._redis = redis
        self._ttl = ttl_seconds
        self._prefix = prefix

    def _key(self, recipient_id: str) -> str:
        return f"{self._prefix}:{recipient_id}"

    async def get(self, recipient_id: str) -> Preferences | None:
        try:
            cached = await self._redis.get(self._key(recipient_id))
            if cached:
                return Preferences.model_validate_json(cached)
        except Exception as e:  # noqa: BLE001
            logger.warning("Preference cache read failed for %s: %s", recipient_id, e)
        prefs = await self._backing.get(recipient_id)
        if prefs is not None:
            await self._cache(prefs)
        return prefs

    async def put(self, preferences: Preferences) -> None:
        await self._backing.put(preferences)
        await self._cache(preferences)

    async def upsert_default(self, preferences: Preferences) -> Preferences:
        stored = await self._backing.upsert_default(preferences)
        await self._cache(stored)
        return stored

    async def find_by_unsubscribe_token(self, token: str) -> Preferences | None:
        return await self._backing.find_by_unsubscribe_token(token)

    async def list_by_digest(self, period: DigestPeriod) -> list[Preferences]:
        return await self._backing.list_by_digest(period)

    async def invalidate(self, recipient_id: str) -> None:
        try:
            await self._redis.delete(self._key(recipient_id))
        except Exception as e:  # noqa: BLE001
            logger.warning("Preference cache delete failed for %s: %s", recipient_id, e)

    async def _cache(self, preferences: Preferences) -> None:
        try:
            await self._redis.setex(
                self._key(preferences.recipient_id), self._ttl, preferences.model_dump_json()
            )
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Preference cache write failed for %s: %s", preferences.recipient_id, e
            )


class RedisPreferenceStore(IPreferenceStore):
    """
    Durable preference records shared by every server process.

    ``preferences:record:{id}`` holds the JSON record with no expiry.
    ``preferences:token:{token}`` maps an unsubscribe token to its owner and
    ``preferences:digest:{period}`` sets list recipients per digest period.
    ``SET NX`` decides the winner when two processes create defaults for the
    same recipient; the loser reads the winner's record back.
    """

    def __init__(
        self, redis: Redis, *, prefix: str = "preferences"  # type: ignore[type-arg]
    ) -> None:
        self._redis = redis
        self._prefix = prefix

    def _record(self, recipient_id: str) -> str:
        return f"{self._prefix}:record:{recipient_id}"

    def _token(self, token: str) -> str:
        return f"{self._prefix}:token:{token}"

    def _digest(self, period: DigestPeriod) -> str:
        return f"{self._prefix}:digest:{period.value}"

    async def get(self, recipient_id: str) -> Preferences | None:
        raw = await self._redis.get(self._record(recipient_id))
        return Preferences.model_validate_json(raw) if raw else None

    async def put(self, preferences: Preferences) -> None:
        previous = await self.get(preferences.recipient_id)
        async with self._redis.pipeline() as pipe:
            pipe.set(self._record(preferences.recipient_id), preferences.model_dump_json())
            if previous is not None:
                if previous.unsubscribe_token != preferences.unsubscribe_token:
                    pipe.delete(self._token(previous.unsubscribe_token))
                if previous.digest != preferences.digest:
                    pipe.srem(self._digest(previous.digest), preferences.recipient_id)
            self._index(pipe, preferences)
            await pipe.execute()

    async def upsert_default(self, preferences: Preferences) -> Preferences:
        created = await self._redis.set(
            self._record(preferences.recipient_id), preferences.model_dump_json(), nx=True
        )
        if created:
            async with self._redis.pipeline() as pipe:
                self._index(pipe, preferences)
                await pipe.execute()
            return preferences
        stored = await self.get(preferences.recipient_id)
        if stored is None:
            logger.warning(
                "Preferences for %s vanished after a lost insert race", preferences.recipient_id
            )
            return preferences
        return stored

    async def find_by_unsubscribe_token(self, token: str) -> Preferences | None:
        owner = await self._redis.get(self._token(token))
        if not owner:
            return None
        prefs = await self.get(as_text(owner))
        if prefs is None or prefs.unsubscribe_token != token:
            return None
        return prefs

    async def list_by_digest(self, period: DigestPeriod) -> list[Preferences]:
        members = sorted(as_text(m) for m in await self._redis.smembers(self._digest(period)))
        if not members:
            return []
        values = await self._redis.mget([self._record(m) for m in members])
        records = [Preferences.model_validate_json(v) for v in values if v]
        return [p for p in records if p.digest == period]

    def _index(self, pipe: Pipeline, preferences: Preferences) -> None:  # type: ignore[type-arg]
        pipe.set(self._token(preferences.unsubscribe_token), preferences.recipient_id)
        pipe.sadd(self._digest(preferences.digest), preferences.recipient_id)
