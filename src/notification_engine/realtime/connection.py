"""Per-socket connection state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..exceptions import ConnectionStateError


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.AUTHENTICATED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.AUTHENTICATED: frozenset(
        {ConnectionState.ACTIVE, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.ACTIVE: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.DISCONNECTED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Connection:
    """One client socket.

    ``connecting -> authenticated -> active -> disconnected``; any state may
    drop to ``disconnected``, which is terminal.
    """

    socket_id: str
    state: ConnectionState = ConnectionState.CONNECTING
    recipient_id: str | None = None
    connected_at: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)
    close_reason: str | None = None

    def _move(self, target: ConnectionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ConnectionStateError(
                f"Connection {self.socket_id}: {self.state.value} -> {target.value} not allowed"
            )
        self.state = target

    def authenticate(self, recipient_id: str) -> None:
        self._move(ConnectionState.AUTHENTICATED)
        self.recipient_id = recipient_id

    def activate(self) -> None:
        self._move(ConnectionState.ACTIVE)
        self.touch()

    def disconnect(self, reason: str) -> None:
        self._move(ConnectionState.DISCONNECTED)
        self.close_reason = reason

    def touch(self) -> None:
        self.last_seen = _utcnow()

    @property
    def is_active(self) -> bool:
        return self.state == ConnectionState.ACTIVE
