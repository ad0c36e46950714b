"""NotificationMetrics: Prometheus counters and gauges.

Emits:
  - ``notification_deliveries_total{channel, outcome}``
  - ``notification_dead_letters_total{channel}``
  - ``notification_queue_depth{channel}``
  - ``notification_active_connections``
  - ``notification_operation_duration_seconds{operation, outcome}``
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_logger = logging.getLogger(__name__)


class NotificationMetrics:
    """Delivery, queue and connection metrics.

    Pass ``registry`` (a ``prometheus_client.CollectorRegistry``) to isolate
    instances; the default is the process-wide registry.
    """

    def __init__(self, registry: Any | None = None) -> None:
        self._deliveries = None
        self._dead_letters = None
        self._queue_depth = None
        self._connections = None
        self._duration = None
        self._depth_labels: set[str] = set()
        target = registry if registry is not None else REGISTRY
        try:
            self._deliveries = Counter(
                "notification_deliveries_total",
                "Channel delivery attempts",
                ["channel", "outcome"],
                registry=target,
            )
            self._dead_letters = Counter(
                "notification_dead_letters_total",
                "Jobs moved to the dead-letter set",
                ["channel"],
                registry=target,
            )
            self._queue_depth = Gauge(
                "notification_queue_depth",
                "Queued or processing jobs",
                ["channel"],
                registry=target,
            )
            self._connections = Gauge(
                "notification_active_connections",
                "Realtime sockets held by this process",
                registry=target,
            )
            self._duration = Histogram(
                "notification_operation_duration_seconds",
                "Instrumented operation duration",
                ["operation", "outcome"],
                registry=target,
            )
        except ValueError:
            # Already registered in this registry (second engine in one process).
            _logger.warning("Notification metrics already registered, metrics disabled")
            self._deliveries = self._dead_letters = None
            self._queue_depth = self._connections = self._duration = None

    @property
    def enabled(self) -> bool:
        return self._deliveries is not None

    def record_delivery(self, channel: str, success: bool, *, retryable: bool = False) -> None:
        if self._deliveries is None:
            return
        outcome = "success" if success else ("retry" if retryable else "failure")
        self._deliveries.labels(channel=channel, outcome=outcome).inc()

    def record_dead_letter(self, channel: str) -> None:
        if self._dead_letters is not None:
            self._dead_letters.labels(channel=channel).inc()

    def set_queue_depth(self, depth: dict[str, int]) -> None:
        if self._queue_depth is None:
            return
        # Channels that drained to zero disappear from depth(); reset them.
        for channel in self._depth_labels - set(depth):
            self._queue_depth.labels(channel=channel).set(0)
        for channel, count in depth.items():
            self._queue_depth.labels(channel=channel).set(count)
        self._depth_labels |= set(depth)

    def set_active_connections(self, count: int) -> None:
        if self._connections is not None:
            self._connections.set(count)

    async def hook(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Instrumentation hook recording operation duration."""
        if self._duration is None:
            return await next_handler()
        start = time.monotonic()
        outcome = "success"
        try:
            return await next_handler()
        except Exception:
            outcome = "error"
            raise
        finally:
            try:
                self._duration.labels(operation=operation, outcome=outcome).observe(
                    time.monotonic() - start
                )
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to emit metrics labels", exc_info=True)
