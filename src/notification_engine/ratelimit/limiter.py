"""Fixed-window rate limiter keyed by (recipient, channel)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..delivery import Channel

if TYPE_CHECKING:
    from ..ports.queue import ICounterStore

logger = logging.getLogger("notification_engine.ratelimit")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Ceiling of ``limit`` sends per ``window_seconds``."""

    limit: int
    window_seconds: int = 60

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


# Per-minute ceilings per channel; channels absent here are not throttled.
DEFAULT_POLICIES: dict[Channel, RateLimitPolicy] = {
    Channel.EMAIL: RateLimitPolicy(limit=60),
    Channel.SMS: RateLimitPolicy(limit=30),
    Channel.PUSH: RateLimitPolicy(limit=120),
}


class FixedWindowRateLimiter:
    """
    Rate limiter over a shared :class:`ICounterStore`.

    The counter lives outside the process (Redis in production), so every
    server process draws from the same budget. The first increment in a window
    starts its expiry; once the count passes the ceiling further sends are
    rejected until the key expires.
    """

    def __init__(
        self,
        counters: ICounterStore,
        policies: dict[Channel, RateLimitPolicy] | None = None,
        *,
        prefix: str = "ratelimit",
        fail_open: bool = True,
    ) -> None:
        self._counters = counters
        self._policies = dict(DEFAULT_POLICIES if policies is None else policies)
        self._prefix = prefix
        self._fail_open = fail_open

    def key_for(self, recipient: str, channel: Channel) -> str:
        return f"{self._prefix}:{channel.value}:{recipient}"

    def policy_for(self, channel: Channel) -> RateLimitPolicy | None:
        return self._policies.get(channel)

    async def check_and_increment(self, key: str, policy: RateLimitPolicy) -> bool:
        """Count one send against ``key``; return False when over the ceiling."""
        try:
            count = await self._counters.increment(key, policy.window_seconds)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Rate-limit counter unavailable for %s (fail_open=%s): %s",
                key,
                self._fail_open,
                e,
            )
            return self._fail_open
        allowed = count <= policy.limit
        if not allowed:
            logger.info("Rate limit exceeded for %s (%d > %d)", key, count, policy.limit)
        return allowed

    async def allow(self, recipient: str, channel: Channel) -> bool:
        """Check and count one send to ``recipient`` on ``channel``."""
        policy = self.policy_for(channel)
        if policy is None:
            return True
        return await self.check_and_increment(self.key_for(recipient, channel), policy)

    async def reset(self, recipient: str, channel: Channel) -> None:
        await self._counters.reset(self.key_for(recipient, channel))
