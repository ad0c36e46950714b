"""In-memory channel adapter for test assertions."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..exceptions import DeliveryError
from .base import BaseChannelAdapter

if TYPE_CHECKING:
    from ..delivery import Channel, RenderedContent
    from ..ratelimit.limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class SentMessage:
    """Record of a sent message for test assertions."""

    recipient: str
    content: RenderedContent
    channel: Channel
    options: dict[str, Any]


class InMemoryChannelAdapter(BaseChannelAdapter):
    """
    Test double (Fake) that records sends and can be scripted to fail.

    ``fail_with`` makes every provider call fail; ``fail_next`` queues
    failures consumed one per call before sends start succeeding again.
    ``calls`` counts provider calls, including failed ones.
    """

    def __init__(
        self,
        channel: Channel,
        *,
        rate_limiter: FixedWindowRateLimiter | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self.channel = channel
        self.sent_messages: list[SentMessage] = []
        self.calls = 0
        self._always: tuple[str, bool] | None = None
        self._queued: list[tuple[str, bool]] = []
        self._failing_contacts: dict[str, tuple[str, bool]] = {}

    def fail_with(self, error: str, *, retryable: bool = False) -> None:
        self._always = (error, retryable)

    def fail_next(self, error: str, *, retryable: bool = True, times: int = 1) -> None:
        self._queued.extend([(error, retryable)] * times)

    def fail_for(self, contact: str, error: str, *, retryable: bool = False) -> None:
        self._failing_contacts[contact] = (error, retryable)

    def succeed(self) -> None:
        self._always = None
        self._queued.clear()
        self._failing_contacts.clear()

    async def _deliver(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> str | None:
        self.calls += 1
        failure = self._failing_contacts.get(contact) or self._always
        if failure is None and self._queued:
            failure = self._queued.pop(0)
        if failure is not None:
            error, retryable = failure
            raise DeliveryError(self.channel.value, contact, error, retryable=retryable)
        self.sent_messages.append(SentMessage(contact, content, self.channel, dict(options)))
        return f"mem-{uuid.uuid4().hex[:12]}"

    def sent_to(self, recipient: str) -> list[SentMessage]:
        return [m for m in self.sent_messages if m.recipient == recipient]

    def assert_sent(self, recipient: str, count: int = 1) -> None:
        """Helper for test assertions."""
        matches = self.sent_to(recipient)
        if len(matches) != count:
            raise AssertionError(
                f"Expected {count} messages to {recipient} via {self.channel.value}, "
                f"but found {len(matches)}."
            )

    def clear(self) -> None:
        """Clear all sent messages."""
        self.sent_messages.clear()
        self.calls = 0
