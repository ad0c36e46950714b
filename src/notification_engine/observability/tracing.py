"""TracingHook: OpenTelemetry spans around instrumented operations (optional [tracing] extra)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TracingHook:
    """Implements the instrumentation hook protocol with tracing attributes."""

    async def __call__(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            trace_api = cast(
                "Any", __import__("opentelemetry.trace", fromlist=["trace"])
            )
        except ImportError:
            return await next_handler()

        tracer = trace_api.get_tracer("notification-engine")
        with tracer.start_as_current_span(operation) as span:
            for key, value in attributes.items():
                span.set_attribute(key, str(value))
            try:
                result = await next_handler()
                span.set_attribute("outcome", "success")
                return result
            except Exception as exc:  # noqa: BLE001
                span.set_attribute("outcome", "error")
                span.record_exception(exc)
                raise
