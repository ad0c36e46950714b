"""Connection registry: process-local socket map mirrored into a shared store."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..ports.realtime import IConnectionStore
    from .connection import Connection

logger = logging.getLogger("notification_engine.realtime")


class ConnectionRegistry:
    """
    Tracks which sockets this process holds, and mirrors them into the shared
    :class:`IConnectionStore` so any process can answer "is this recipient
    reachable anywhere".

    The lock guards only the local maps; shared-store I/O happens outside it.
    Shared-store failures are logged and the local view keeps working.
    """

    def __init__(
        self,
        store: IConnectionStore,
        process_id: str,
        *,
        ttl_seconds: int = 300,
    ) -> None:
        self._store = store
        self.process_id = process_id
        self._ttl_seconds = ttl_seconds
        self._lock = asyncio.Lock()
        self._connections: dict[str, Connection] = {}
        self._by_recipient: dict[str, set[str]] = {}

    async def register(self, connection: Connection) -> None:
        recipient_id = connection.recipient_id
        if recipient_id is None:
            raise ValueError("Only authenticated connections can be registered")
        async with self._lock:
            self._connections[connection.socket_id] = connection
            self._by_recipient.setdefault(recipient_id, set()).add(connection.socket_id)
        try:
            await self._store.add(
                recipient_id, connection.socket_id, self.process_id, self._ttl_seconds
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Shared registry add failed for %s: %s", recipient_id, e)

    async def unregister(self, socket_id: str) -> Connection | None:
        """Forget a socket; returns its connection when it was known."""
        async with self._lock:
            connection = self._connections.pop(socket_id, None)
            if connection is None or connection.recipient_id is None:
                return connection
            sockets = self._by_recipient.get(connection.recipient_id, set())
            sockets.discard(socket_id)
            if not sockets:
                self._by_recipient.pop(connection.recipient_id, None)
        try:
            remaining = await self._store.remove(connection.recipient_id, socket_id)
            logger.debug(
                "Socket %s closed, %d remaining for %s",
                socket_id,
                remaining,
                connection.recipient_id,
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Shared registry remove failed for %s: %s", socket_id, e)
        return connection

    def get(self, socket_id: str) -> Connection | None:
        return self._connections.get(socket_id)

    def local_sockets(self, recipient_id: str) -> list[str]:
        return sorted(self._by_recipient.get(recipient_id, ()))

    def local_socket_ids(self) -> list[str]:
        return list(self._connections)

    @property
    def active_count(self) -> int:
        return len(self._connections)

    async def is_online(self, recipient_id: str) -> bool:
        """True when any process holds a socket for ``recipient_id``."""
        if self._by_recipient.get(recipient_id):
            return True
        try:
            return await self._store.count(recipient_id) > 0
        except Exception as e:  # noqa: BLE001
            logger.warning("Shared registry count failed for %s: %s", recipient_id, e)
            return False

    async def refresh(self, recipient_id: str) -> None:
        try:
            await self._store.refresh(recipient_id, self._ttl_seconds)
        except Exception as e:  # noqa: BLE001
            logger.warning("Shared registry refresh failed for %s: %s", recipient_id, e)

    async def online_recipients(self) -> set[str]:
        return await self._store.online_recipients()
