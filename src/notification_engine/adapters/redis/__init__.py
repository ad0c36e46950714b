"""Redis backends shared by every server process."""

from .audit import RedisAuditStore
from .counters import RedisCounterStore
from .inbox import RedisInAppStore
from .jobs import RedisJobStore
from .preferences import CachedPreferenceStore, RedisPreferenceStore
from .realtime import (
    ONLINE_SET,
    RedisConnectionStore,
    RedisPendingStore,
    RedisRealtimeBus,
)

__all__ = [
    "ONLINE_SET",
    "CachedPreferenceStore",
    "RedisAuditStore",
    "RedisConnectionStore",
    "RedisCounterStore",
    "RedisInAppStore",
    "RedisJobStore",
    "RedisPendingStore",
    "RedisPreferenceStore",
    "RedisRealtimeBus",
]
