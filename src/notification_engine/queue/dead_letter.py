"""DeadLetterHandler: route delivery jobs that exhausted their retries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from .job import DeliveryJob

logger = logging.getLogger("notification_engine.queue")


class DeadLetterHandler:
    """Moves jobs into the dead-letter state and notifies an optional callback.

    Dead jobs stay in the job store for inspection; ``DeliveryQueue.requeue_dead``
    revives them. The callback typically alerts an operator or publishes to a
    DLQ topic; its failures are logged and never block the transition.
    """

    def __init__(
        self,
        on_dead_letter: (
            Callable[[DeliveryJob, str], Coroutine[Any, Any, None]] | None
        ) = None,
    ) -> None:
        """Configure dead-letter handling.

        Args:
            on_dead_letter: Async callable (job, reason) -> None, invoked after
                the job is marked DEAD.
        """
        self._on_dead_letter = on_dead_letter

    async def route(self, job: DeliveryJob, reason: str) -> None:
        """Mark ``job`` DEAD (the caller persists it) and run the callback."""
        job.dead_letter(reason)
        logger.warning(
            "Job %s dead-lettered after %d attempts: %s",
            job.id,
            job.attempts,
            reason,
        )
        if self._on_dead_letter is None:
            return
        try:
            await self._on_dead_letter(job, reason)
        except Exception as e:  # noqa: BLE001
            logger.warning("Dead-letter callback failed for job %s: %s", job.id, e)
