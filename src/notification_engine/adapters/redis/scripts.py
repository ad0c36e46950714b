"""Shared helpers for Redis adapters: Lua execution and reply decoding."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from redis.asyncio import Redis


async def run_script(
    redis: Redis, script: str, keys: list[str], args: list[Any]  # type: ignore[type-arg]
) -> Any:
    """EVAL ``script`` with ``keys`` and ``args`` and return the reply."""
    result = redis.eval(script, len(keys), *keys, *args)  # type: ignore[no-untyped-call]
    return await result if hasattr(result, "__await__") else result


def as_text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)
