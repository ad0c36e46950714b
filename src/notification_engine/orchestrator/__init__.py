"""Orchestration: request pipeline, group fan-out and digests."""

from .digest import (
    DIGEST_CATEGORY,
    Digest,
    DigestScheduler,
    DigestService,
    digest_template,
    next_digest_time,
)
from .orchestrator import (
    EXPIRED,
    NO_ENABLED_CHANNELS,
    NO_RECIPIENTS,
    NotificationOrchestrator,
    OrchestratorConfig,
    aggregate_status,
)

__all__ = [
    "DIGEST_CATEGORY",
    "EXPIRED",
    "NO_ENABLED_CHANNELS",
    "NO_RECIPIENTS",
    "Digest",
    "DigestScheduler",
    "DigestService",
    "NotificationOrchestrator",
    "OrchestratorConfig",
    "aggregate_status",
    "digest_template",
    "next_digest_time",
]
