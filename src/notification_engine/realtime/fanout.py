"""RealtimeFanout: two-tier delivery of live events to connected clients."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

from ..correlation import get_correlation_id
from ..exceptions import AuthenticationError
from ..instrumentation import get_hook_registry
from .connection import Connection, ConnectionState
from .events import (
    NOTIFICATION_READ,
    UNREAD_COUNT,
    BusMessage,
    RealtimeEvent,
)
from .registry import ConnectionRegistry

if TYPE_CHECKING:
    from ..observability.metrics import NotificationMetrics
    from ..ports.realtime import (
        IConnectionStore,
        IPendingStore,
        IRealtimeBus,
        ISocketTransport,
        ITokenAuthenticator,
    )
    from ..ports.stores import IInAppStore

logger = logging.getLogger("notification_engine.realtime")

ACTION_DISCONNECT = "disconnect"


@dataclass(frozen=True)
class RealtimeConfig:
    """Pending-list bounds and shared-registry TTL."""

    pending_cap: int = 100
    pending_ttl_seconds: int = 7 * 24 * 3600
    registry_ttl_seconds: int = 300


class RealtimeFanout:
    """
    Delivers events to every socket of a recipient across server processes.

    ``publish`` emits to sockets held by this process and broadcasts one bus
    message tagged with this process id; sibling processes deliver to their
    own sockets and ignore their own echo, so each socket gets one copy.
    Recipients connected nowhere get substantive events buffered in a capped,
    expiring pending list that is flushed on their next connect.
    """

    def __init__(
        self,
        transport: ISocketTransport,
        authenticator: ITokenAuthenticator,
        connections: IConnectionStore,
        pending: IPendingStore,
        bus: IRealtimeBus,
        *,
        config: RealtimeConfig | None = None,
        process_id: str | None = None,
        inbox: IInAppStore | None = None,
        metrics: NotificationMetrics | None = None,
    ) -> None:
        self.config = config or RealtimeConfig()
        self.process_id = process_id or f"proc-{uuid.uuid4().hex[:8]}"
        self._transport = transport
        self._authenticator = authenticator
        self._pending = pending
        self._bus = bus
        self._inbox = inbox
        self._metrics = metrics
        self.registry = ConnectionRegistry(
            connections,
            self.process_id,
            ttl_seconds=self.config.registry_ttl_seconds,
        )
        self._started = False

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        await self._bus.subscribe(self._on_bus_message)
        self._started = True
        logger.info("RealtimeFanout %s started", self.process_id)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for socket_id in self.registry.local_socket_ids():
            await self.disconnect(socket_id, reason="server_shutdown", close_socket=True)
        await self._bus.close()
        logger.info("RealtimeFanout %s stopped", self.process_id)

    # -- connections ------------------------------------------------------

    async def connect(self, socket_id: str, token: str) -> Connection:
        """Run the handshake: authenticate, activate, flush pending events.

        Raises :class:`AuthenticationError` after closing the socket when the
        token is rejected.
        """
        connection = Connection(socket_id)
        try:
            recipient_id = await self._authenticator.authenticate(token)
        except AuthenticationError as e:
            connection.disconnect("unauthorized")
            logger.warning("Socket %s rejected: %s", socket_id, e)
            await self._transport.close(socket_id, "unauthorized")
            raise

        connection.authenticate(recipient_id)
        await self.registry.register(connection)
        connection.activate()
        self._observe_connections()
        logger.info("Socket %s active for %s", socket_id, recipient_id)

        await self._flush_pending(recipient_id, socket_id)
        if self._inbox is not None:
            count = await self._inbox.unread_count(recipient_id)
            await self._emit(socket_id, RealtimeEvent(name=UNREAD_COUNT, payload={"count": count}))
        return connection

    async def disconnect(
        self,
        socket_id: str,
        reason: str = "client_disconnect",
        *,
        close_socket: bool = False,
    ) -> None:
        connection = await self.registry.unregister(socket_id)
        if connection is None:
            return
        if connection.state != ConnectionState.DISCONNECTED:
            connection.disconnect(reason)
        if close_socket:
            await self._transport.close(socket_id, reason)
        self._observe_connections()
        logger.info("Socket %s disconnected (%s)", socket_id, reason)

    async def heartbeat(self, socket_id: str) -> None:
        """Client ping: refresh liveness locally and in the shared registry."""
        connection = self.registry.get(socket_id)
        if connection is None or connection.recipient_id is None:
            return
        connection.touch()
        await self.registry.refresh(connection.recipient_id)

    async def is_online(self, recipient_id: str) -> bool:
        return await self.registry.is_online(recipient_id)

    @property
    def active_connections(self) -> int:
        return self.registry.active_count

    # -- publishing -------------------------------------------------------

    async def publish(self, recipient_id: str, event: RealtimeEvent) -> int:
        """Deliver ``event`` to every socket of ``recipient_id``.

        Returns the number of sockets reached on this process. When the
        recipient has no socket anywhere, non-ephemeral events are buffered.
        """
        registry = get_hook_registry()
        return cast(
            "int",
            await registry.execute_all(
                "realtime.publish",
                {
                    "realtime.event": event.name,
                    "realtime.process_id": self.process_id,
                    "correlation_id": get_correlation_id(),
                },
                lambda: self._publish(recipient_id, event),
            ),
        )

    async def _publish(self, recipient_id: str, event: RealtimeEvent) -> int:
        if not await self.registry.is_online(recipient_id):
            if not event.ephemeral:
                await self._pending.push(
                    recipient_id,
                    event,
                    self.config.pending_cap,
                    self.config.pending_ttl_seconds,
                )
                logger.debug("Buffered %s for offline recipient %s", event.name, recipient_id)
            return 0

        delivered = await self._deliver_local(recipient_id, event)
        await self._broadcast_bus(
            BusMessage(origin=self.process_id, event=event, recipient_id=recipient_id)
        )
        return delivered

    async def broadcast(self, event: RealtimeEvent) -> int:
        """Deliver ``event`` to every connected socket on every process."""
        delivered = 0
        for socket_id in self.registry.local_socket_ids():
            delivered += await self._emit(socket_id, event)
        await self._broadcast_bus(BusMessage(origin=self.process_id, event=event))
        return delivered

    async def disconnect_recipient(self, recipient_id: str, reason: str = "revoked") -> None:
        """Close every socket of ``recipient_id`` on every process."""
        await self._disconnect_local(recipient_id, reason)
        await self._broadcast_bus(
            BusMessage(
                origin=self.process_id,
                event=RealtimeEvent(name="disconnect", payload={"reason": reason}),
                recipient_id=recipient_id,
                action=ACTION_DISCONNECT,
            )
        )

    async def ack(self, recipient_id: str, notification_id: str) -> bool:
        """Mark an in-app notification read and push the new unread count."""
        if self._inbox is None:
            return False
        changed = await self._inbox.mark_read(recipient_id, notification_id)
        if changed:
            await self.publish(
                recipient_id,
                RealtimeEvent(name=NOTIFICATION_READ, payload={"notification_id": notification_id}),
            )
            await self.publish_unread_count(recipient_id)
        return changed

    async def publish_unread_count(self, recipient_id: str) -> None:
        if self._inbox is None:
            return
        count = await self._inbox.unread_count(recipient_id)
        await self.publish(recipient_id, RealtimeEvent(name=UNREAD_COUNT, payload={"count": count}))

    # -- internals --------------------------------------------------------

    async def _on_bus_message(self, message: BusMessage) -> None:
        if message.origin == self.process_id:
            return
        if message.action == ACTION_DISCONNECT and message.recipient_id is not None:
            reason = str(message.event.payload.get("reason"))
            await self._disconnect_local(message.recipient_id, reason)
            return
        if message.recipient_id is None:
            for socket_id in self.registry.local_socket_ids():
                await self._emit(socket_id, message.event)
            return
        await self._deliver_local(message.recipient_id, message.event)

    async def _deliver_local(self, recipient_id: str, event: RealtimeEvent) -> int:
        delivered = 0
        for socket_id in self.registry.local_sockets(recipient_id):
            delivered += await self._emit(socket_id, event)
        return delivered

    async def _disconnect_local(self, recipient_id: str, reason: str) -> None:
        for socket_id in self.registry.local_sockets(recipient_id):
            await self.disconnect(socket_id, reason=reason, close_socket=True)

    async def _flush_pending(self, recipient_id: str, socket_id: str) -> None:
        try:
            events = await self._pending.drain(recipient_id)
        except Exception as e:  # noqa: BLE001
            logger.warning("Pending drain failed for %s: %s", recipient_id, e)
            return
        for event in events:
            await self._emit(socket_id, event)
        if events:
            logger.info("Flushed %d pending events to %s", len(events), recipient_id)

    async def _emit(self, socket_id: str, event: RealtimeEvent) -> int:
        try:
            await self._transport.emit(socket_id, event.name, event.wire_payload())
        except Exception as e:  # noqa: BLE001
            logger.warning("Emit %s to socket %s failed: %s", event.name, socket_id, e)
            return 0
        return 1

    async def _broadcast_bus(self, message: BusMessage) -> None:
        try:
            await self._bus.publish(message)
        except Exception as e:  # noqa: BLE001
            logger.warning("Realtime bus publish failed (%s): %s", message.event.name, e)

    def _observe_connections(self) -> None:
        if self._metrics is not None:
            self._metrics.set_active_connections(self.active_connections)

    def describe(self) -> dict[str, Any]:
        return {
            "process_id": self.process_id,
            "active_connections": self.active_connections,
            "started": self._started,
        }
