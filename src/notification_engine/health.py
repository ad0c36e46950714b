"""Engine health: component checks, delivery-worker heartbeats and queue checks."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from .queue.queue import DeliveryQueue

logger = logging.getLogger("notification_engine.health")

UP = "up"
DOWN = "down"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class HealthRegistry:
    """
    Named component checks plus delivery-worker heartbeats, owned by the engine.

    A check is a sync or async callable returning truthy while its component
    can serve; a check that raises is reported down and logged. Workers
    heartbeat once per poll and are reported down after
    ``heartbeat_timeout_seconds`` of silence.
    """

    def __init__(self, heartbeat_timeout_seconds: float = 60.0) -> None:
        self._checks: dict[str, Callable[[], Any]] = {}
        self._heartbeats: dict[str, datetime.datetime] = {}
        self._heartbeat_timeout = heartbeat_timeout_seconds

    def register(self, name: str, check: Callable[[], Any]) -> None:
        self._checks[name] = check

    def heartbeat(self, worker_name: str) -> None:
        self._heartbeats[worker_name] = _utcnow()

    def forget(self, worker_name: str) -> None:
        """Drop a worker that stopped cleanly."""
        self._heartbeats.pop(worker_name, None)

    async def _run(self, name: str, check: Callable[[], Any]) -> str:
        try:
            value = check()
            if asyncio.iscoroutine(value):
                value = await value
        except Exception as e:  # noqa: BLE001
            logger.warning("Health check %s failed: %s", name, e)
            return DOWN
        return UP if value else DOWN

    def _worker_states(self) -> dict[str, str]:
        now = _utcnow()
        states: dict[str, str] = {}
        for worker_name, last in self._heartbeats.items():
            silent = (now - last).total_seconds()
            if silent >= self._heartbeat_timeout:
                logger.warning("Worker %s silent for %.0fs", worker_name, silent)
                states[worker_name] = DOWN
            else:
                states[worker_name] = UP
        return states

    async def check_all(self) -> dict[str, str]:
        """Run every check concurrently; return ``{component: "up" | "down"}``."""
        names = list(self._checks)
        states = await asyncio.gather(*(self._run(n, self._checks[n]) for n in names))
        result = dict(zip(names, states))
        result.update(self._worker_states())
        return result

    async def status(self) -> dict[str, Any]:
        components = await self.check_all()
        healthy = all(v == UP for v in components.values())
        return {
            "status": "healthy" if healthy else "unhealthy",
            "components": components,
            "timestamp": _utcnow().isoformat(),
            "workers": {name: ts.isoformat() for name, ts in self._heartbeats.items()},
        }


class RedisHealthCheck:
    """Up while the shared Redis answers PING."""

    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client

    async def __call__(self) -> bool:
        return bool(await self._redis.ping())


class QueueBacklogCheck:
    """Down when more than ``max_pending`` jobs are queued or in flight."""

    def __init__(self, queue: DeliveryQueue, max_pending: int) -> None:
        self._queue = queue
        self._max_pending = max_pending

    async def __call__(self) -> bool:
        depth = await self._queue.depth()
        pending = sum(depth.values())
        if pending > self._max_pending:
            logger.warning(
                "Delivery backlog %d exceeds %d: %s", pending, self._max_pending, depth
            )
            return False
        return True


class DeadLetterCheck:
    """Down once ``max_dead`` or more jobs wait in the dead-letter set."""

    def __init__(self, queue: DeliveryQueue, max_dead: int) -> None:
        if max_dead < 1:
            raise ValueError("max_dead must be at least 1")
        self._queue = queue
        self._max_dead = max_dead

    async def __call__(self) -> bool:
        dead = await self._queue.dead_letters(limit=self._max_dead)
        if len(dead) >= self._max_dead:
            logger.warning("%d or more jobs are dead-lettered", self._max_dead)
            return False
        return True
