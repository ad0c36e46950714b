"""In-memory realtime backends: shared registry, pending lists and bus.

One instance of each can be shared by several ``RealtimeFanout`` objects to
simulate several server processes in a single test.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Any

from ...ports.realtime import (
    IConnectionStore,
    IPendingStore,
    IRealtimeBus,
    ISocketTransport,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ...realtime.events import BusMessage, RealtimeEvent

logger = logging.getLogger(__name__)


class InMemoryConnectionStore(IConnectionStore):
    """Shared registry without TTL expiry."""

    def __init__(self) -> None:
        self._sockets: dict[str, dict[str, str]] = {}

    async def add(
        self, recipient_id: str, socket_id: str, process_id: str, ttl_seconds: int
    ) -> None:
        self._sockets.setdefault(recipient_id, {})[socket_id] = process_id

    async def remove(self, recipient_id: str, socket_id: str) -> int:
        sockets = self._sockets.get(recipient_id, {})
        sockets.pop(socket_id, None)
        if not sockets:
            self._sockets.pop(recipient_id, None)
        return len(sockets)

    async def count(self, recipient_id: str) -> int:
        return len(self._sockets.get(recipient_id, {}))

    async def refresh(self, recipient_id: str, ttl_seconds: int) -> None:
        return None

    async def online_recipients(self) -> set[str]:
        return set(self._sockets)


class InMemoryPendingStore(IPendingStore):
    """Capped per-recipient buffers (oldest evicted). TTL is not simulated."""

    def __init__(self) -> None:
        self._pending: dict[str, deque[RealtimeEvent]] = {}

    async def push(
        self, recipient_id: str, event: RealtimeEvent, cap: int, ttl_seconds: int
    ) -> None:
        buffer = self._pending.setdefault(recipient_id, deque())
        buffer.append(event)
        while len(buffer) > cap:
            buffer.popleft()

    async def drain(self, recipient_id: str) -> list[RealtimeEvent]:
        return list(self._pending.pop(recipient_id, deque()))

    def peek(self, recipient_id: str) -> list[RealtimeEvent]:
        return list(self._pending.get(recipient_id, deque()))


class InMemoryRealtimeBus(IRealtimeBus):
    """Shared bus: publish invokes every subscribed handler, including the
    publisher's own (receivers drop their echo by origin)."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[BusMessage], Awaitable[None]]] = []
        self.published: list[BusMessage] = []

    async def publish(self, message: BusMessage) -> None:
        self.published.append(message)
        for handler in list(self._handlers):
            await handler(message)

    async def subscribe(self, handler: Callable[[BusMessage], Awaitable[None]]) -> None:
        self._handlers.append(handler)

    async def close(self) -> None:
        self._handlers.clear()


class InMemorySocketTransport(ISocketTransport):
    """Records emitted events per socket for assertions."""

    def __init__(self) -> None:
        self.emitted: list[tuple[str, str, dict[str, Any]]] = []
        self.closed: dict[str, str] = {}

    async def emit(self, socket_id: str, event: str, payload: dict[str, Any]) -> None:
        self.emitted.append((socket_id, event, payload))

    async def close(self, socket_id: str, reason: str) -> None:
        self.closed[socket_id] = reason

    def events_for(self, socket_id: str, event: str | None = None) -> list[dict[str, Any]]:
        return [
            payload
            for sid, name, payload in self.emitted
            if sid == socket_id and (event is None or name == event)
        ]
