"""Correlation ID management for requests, jobs and realtime events."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID in context."""
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def ensure_correlation_id() -> str:
    """Return the current correlation ID, creating one if the context has none."""
    cid = get_correlation_id()
    if cid is None:
        cid = generate_correlation_id()
        set_correlation_id(cid)
    return cid
