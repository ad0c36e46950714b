"""Realtime fan-out ports: shared connection registry, pending lists, bus, transport."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..realtime.events import BusMessage, RealtimeEvent


@runtime_checkable
class IConnectionStore(Protocol):
    """Cross-process registry answering "is this recipient reachable anywhere"."""

    async def add(
        self, recipient_id: str, socket_id: str, process_id: str, ttl_seconds: int
    ) -> None:
        ...

    async def remove(self, recipient_id: str, socket_id: str) -> int:
        """Remove one socket; return the remaining socket count for the recipient."""
        ...

    async def count(self, recipient_id: str) -> int:
        ...

    async def refresh(self, recipient_id: str, ttl_seconds: int) -> None:
        """Extend the entry TTL (heartbeat)."""
        ...

    async def online_recipients(self) -> set[str]:
        ...


@runtime_checkable
class IPendingStore(Protocol):
    """Bounded, time-limited per-recipient buffer for offline delivery."""

    async def push(
        self, recipient_id: str, event: RealtimeEvent, cap: int, ttl_seconds: int
    ) -> None:
        """Append; evict oldest beyond ``cap``; (re)start the TTL."""
        ...

    async def drain(self, recipient_id: str) -> list[RealtimeEvent]:
        """Return all buffered events oldest first and clear the buffer."""
        ...


@runtime_checkable
class IRealtimeBus(Protocol):
    """Cross-process publish/subscribe bus."""

    async def publish(self, message: BusMessage) -> None:
        ...

    async def subscribe(self, handler: Callable[[BusMessage], Awaitable[None]]) -> None:
        """Start delivering bus messages to ``handler``."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ISocketTransport(Protocol):
    """Process-local socket transport (websocket server, socket.io bridge...)."""

    async def emit(self, socket_id: str, event: str, payload: dict[str, Any]) -> None:
        ...

    async def close(self, socket_id: str, reason: str) -> None:
        ...


@runtime_checkable
class ITokenAuthenticator(Protocol):
    """Validates a handshake token and returns the recipient id."""

    async def authenticate(self, token: str) -> str:
        """Raise ``AuthenticationError`` when the token is not acceptable."""
        ...
