"""RedisCounterStore: shared fixed-window counters (INCR + PEXPIRE in one script)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...ports.queue import ICounterStore
from .scripts import run_script

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("notification_engine.redis.counters")

# KEYS: [counter_key]  ARGV: [window_ms]
# A key left without TTL (e.g. PEXPIRE lost) is re-armed on the next hit.
_INCR_WINDOW_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 or redis.call('PTTL', KEYS[1]) < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return current
"""


class RedisCounterStore(ICounterStore):
    """
    Counter store shared by every server process.

    INCR and the window expiry run atomically in one Lua script, so two
    processes can never both observe "first hit" or leave a key immortal.
    """

    def __init__(self, redis: Redis) -> None:  # type: ignore[type-arg]
        self._redis = redis

    async def increment(self, key: str, window_seconds: int) -> int:
        result = await run_script(
            self._redis, _INCR_WINDOW_SCRIPT, [key], [str(window_seconds * 1000)]
        )
        return int(result)

    async def reset(self, key: str) -> None:
        await self._redis.delete(key)
