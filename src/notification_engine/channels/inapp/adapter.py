"""In-app channel: persist to the inbox, then push live over the realtime fan-out."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ...delivery import Channel
from ...inbox import InAppNotification
from ...realtime.events import NOTIFICATION_NEW, UNREAD_COUNT, RealtimeEvent
from ..base import BaseChannelAdapter

if TYPE_CHECKING:
    from ...delivery import RenderedContent
    from ...ports.stores import IInAppStore
    from ...ratelimit.limiter import FixedWindowRateLimiter
    from ...realtime.fanout import RealtimeFanout

logger = logging.getLogger(__name__)


class InAppAdapter(BaseChannelAdapter):
    """
    Delivery succeeds once the inbox entry is stored; the live push is best
    effort (offline recipients get it from the pending list or the inbox).
    The contact is the recipient id.
    """

    channel = Channel.IN_APP

    def __init__(
        self,
        store: IInAppStore,
        fanout: RealtimeFanout | None = None,
        timeout: float = 5.0,
        *,
        rate_limiter: FixedWindowRateLimiter | None = None,
    ):
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self._store = store
        self._fanout = fanout

    async def _deliver(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> str | None:
        notification = InAppNotification(
            recipient_id=contact,
            title=content.title or "",
            body=content.body_text,
            kind=content.kind or "info",
            category=options.get("category") or "general",
            data=dict(content.data),
        )
        await self._store.add(notification)
        logger.info(f"In-app notification {notification.id} stored for {contact}")

        if self._fanout is not None:
            try:
                await self._fanout.publish(
                    contact,
                    RealtimeEvent(name=NOTIFICATION_NEW, payload=notification.to_event_payload()),
                )
                count = await self._store.unread_count(contact)
                await self._fanout.publish(
                    contact, RealtimeEvent(name=UNREAD_COUNT, payload={"count": count})
                )
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Live push of {notification.id} to {contact} failed: {e}")
        return notification.id
