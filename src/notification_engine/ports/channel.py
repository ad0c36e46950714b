"""Channel adapter port."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..delivery import Channel, ChannelOutcome, RenderedContent


@runtime_checkable
class IChannelAdapter(Protocol):
    """
    Port for one delivery channel (Email, SMS, Push or InApp).

    Adapters never raise for provider failures: they return a failed
    ``ChannelOutcome`` classified as retryable or terminal.

    Adapters must explicitly declare: class SmtpEmailAdapter(IChannelAdapter):
    """

    channel: Channel

    async def send(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any] | None = None,
    ) -> ChannelOutcome:
        """Send to one recipient contact and return the outcome."""
        ...

    async def send_batch(
        self,
        recipients: list[str],
        content: RenderedContent,
        options: dict[str, Any] | None = None,
    ) -> list[ChannelOutcome]:
        """Send the same content to many contacts; one outcome per contact."""
        ...
