"""notification-engine: multi-channel notification orchestration.

Preferences, templates, a leased retrying delivery queue, per-recipient rate
limiting, realtime fan-out across processes and periodic digests.
"""

from __future__ import annotations

from .config import NotificationSettings
from .correlation import (
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from .delivery import (
    Channel,
    ChannelOutcome,
    NotificationStatus,
    Priority,
    RenderedContent,
)
from .engine import NotificationEngine
from .exceptions import (
    AuthenticationError,
    ConnectionStateError,
    DeadLetterError,
    DeliveryError,
    InfrastructureError,
    InvalidContactError,
    InvalidRequestError,
    JobStateError,
    NotificationEngineError,
    PreferenceStoreError,
    QueueError,
    RateLimitExceededError,
    RealtimeError,
    TemplateError,
    TemplateNotFoundError,
    TemplateRenderError,
)
from .health import DeadLetterCheck, HealthRegistry, QueueBacklogCheck, RedisHealthCheck
from .inbox import InAppNotification
from .instrumentation import HookRegistry, get_hook_registry
from .models import (
    AuditRecord,
    ChannelResult,
    GroupSendResult,
    NotificationRequest,
    NotificationResult,
)
from .orchestrator import NotificationOrchestrator, OrchestratorConfig

__all__ = [
    "AuditRecord",
    "AuthenticationError",
    "Channel",
    "ChannelOutcome",
    "ChannelResult",
    "ConnectionStateError",
    "DeadLetterCheck",
    "DeadLetterError",
    "DeliveryError",
    "GroupSendResult",
    "HealthRegistry",
    "HookRegistry",
    "InAppNotification",
    "InfrastructureError",
    "InvalidContactError",
    "InvalidRequestError",
    "JobStateError",
    "NotificationEngine",
    "NotificationEngineError",
    "NotificationOrchestrator",
    "NotificationRequest",
    "NotificationResult",
    "NotificationSettings",
    "NotificationStatus",
    "OrchestratorConfig",
    "PreferenceStoreError",
    "QueueBacklogCheck",
    "Priority",
    "QueueError",
    "RateLimitExceededError",
    "RealtimeError",
    "RedisHealthCheck",
    "RenderedContent",
    "TemplateError",
    "TemplateNotFoundError",
    "TemplateRenderError",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "get_hook_registry",
    "set_correlation_id",
]
