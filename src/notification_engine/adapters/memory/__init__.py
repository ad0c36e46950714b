"""In-memory backends for tests and single-process deployments."""

from .audit import InMemoryAuditStore
from .counters import InMemoryCounterStore
from .directory import InMemoryRecipientDirectory
from .inbox import InMemoryInAppStore
from .jobs import InMemoryJobStore
from .preferences import InMemoryPreferenceStore
from .realtime import (
    InMemoryConnectionStore,
    InMemoryPendingStore,
    InMemoryRealtimeBus,
    InMemorySocketTransport,
)
from .templates import InMemoryTemplateStore

__all__ = [
    "InMemoryAuditStore",
    "InMemoryConnectionStore",
    "InMemoryCounterStore",
    "InMemoryInAppStore",
    "InMemoryJobStore",
    "InMemoryPendingStore",
    "InMemoryPreferenceStore",
    "InMemoryRealtimeBus",
    "InMemoryRecipientDirectory",
    "InMemorySocketTransport",
    "InMemoryTemplateStore",
]
