"""Observability: metrics, structured logging and tracing hooks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..instrumentation import get_hook_registry
from .metrics import NotificationMetrics
from .structured_logging import StructuredLoggingHook
from .tracing import TracingHook

if TYPE_CHECKING:
    from ..instrumentation import HookRegistry

logger = logging.getLogger(__name__)

# Operations wrapped by the engine's components.
ENGINE_OPERATIONS: list[str] = [
    "notification.send",
    "notification.group",
    "queue.process",
    "realtime.publish",
]


def install_hooks(
    *,
    registry: HookRegistry | None = None,
    metrics: NotificationMetrics | None = None,
    structured_logging: bool = True,
    tracing: bool = False,
    operations: list[str] | None = None,
) -> None:
    """Install observability hooks into the (context-local) hook registry."""
    target = registry or get_hook_registry()
    ops = operations or ENGINE_OPERATIONS
    if tracing:
        target.register(TracingHook(), priority=-100, operations=ops)
    if metrics is not None and metrics.enabled:
        target.register(metrics.hook, priority=-50, operations=ops)
    if structured_logging:
        target.register(StructuredLoggingHook(), priority=0, operations=ops)
    logger.info("Observability hooks installed for %s", ", ".join(ops))


__all__ = [
    "ENGINE_OPERATIONS",
    "NotificationMetrics",
    "StructuredLoggingHook",
    "TracingHook",
    "install_hooks",
]
