from .channel import IChannelAdapter
from .queue import ICounterStore, IJobStore
from .realtime import (
    IConnectionStore,
    IPendingStore,
    IRealtimeBus,
    ISocketTransport,
    ITokenAuthenticator,
)
from .stores import (
    IAuditStore,
    IInAppStore,
    IPreferenceStore,
    IRecipientDirectory,
    ITemplateStore,
)

__all__ = [
    "IAuditStore",
    "IChannelAdapter",
    "IConnectionStore",
    "ICounterStore",
    "IInAppStore",
    "IJobStore",
    "IPendingStore",
    "IPreferenceStore",
    "IRealtimeBus",
    "IRecipientDirectory",
    "ISocketTransport",
    "ITemplateStore",
    "ITokenAuthenticator",
]
