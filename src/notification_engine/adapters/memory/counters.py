"""InMemoryCounterStore: process-local counters for tests and single-process use."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from ...ports.queue import ICounterStore

if TYPE_CHECKING:
    from collections.abc import Callable


class InMemoryCounterStore(ICounterStore):
    """Fixed-window counters held in a dict. Not shared across processes."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (count, window_expires_at)
        self._counters: dict[str, tuple[int, float]] = {}

    async def increment(self, key: str, window_seconds: int) -> int:
        now = self._clock()
        count, expires_at = self._counters.get(key, (0, 0.0))
        if expires_at <= now:
            count, expires_at = 0, now + window_seconds
        count += 1
        self._counters[key] = (count, expires_at)
        return count

    async def reset(self, key: str) -> None:
        self._counters.pop(key, None)
