from .auth import JwtAuthenticator
from .connection import Connection, ConnectionState
from .events import (
    EPHEMERAL_EVENTS,
    NOTIFICATION_NEW,
    NOTIFICATION_READ,
    PREFERENCES_UPDATED,
    PRESENCE_UPDATE,
    TYPING,
    UNREAD_COUNT,
    BusMessage,
    RealtimeEvent,
)
from .fanout import RealtimeConfig, RealtimeFanout
from .registry import ConnectionRegistry

__all__ = [
    "EPHEMERAL_EVENTS",
    "NOTIFICATION_NEW",
    "NOTIFICATION_READ",
    "PREFERENCES_UPDATED",
    "PRESENCE_UPDATE",
    "TYPING",
    "UNREAD_COUNT",
    "BusMessage",
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "JwtAuthenticator",
    "RealtimeConfig",
    "RealtimeEvent",
    "RealtimeFanout",
]
