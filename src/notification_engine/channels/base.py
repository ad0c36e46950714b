"""Shared send pipeline for channel adapters."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ..delivery import ChannelOutcome
from ..exceptions import DeliveryError, InvalidContactError
from ..ports.channel import IChannelAdapter

if TYPE_CHECKING:
    from ..delivery import Channel, RenderedContent
    from ..ratelimit.limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

RATE_LIMITED = "rate_limited"
TIMEOUT = "timeout"


class BaseChannelAdapter(IChannelAdapter):
    """
    Common pipeline: normalize contact, check rate limit, call provider
    under a timeout, turn errors into classified outcomes.

    Subclasses implement :meth:`_deliver` (return the provider message id or
    raise :class:`DeliveryError`) and may override :meth:`normalize_contact`
    and :meth:`_deliver_batch`.

    Errors the subclass did not classify are treated as retryable: the queue's
    attempt ceiling bounds them.
    """

    channel: Channel

    def __init__(
        self,
        *,
        rate_limiter: FixedWindowRateLimiter | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._rate_limiter = rate_limiter
        self.timeout = timeout

    def normalize_contact(self, contact: str) -> str:
        """Return the canonical contact or raise :class:`InvalidContactError`."""
        value = contact.strip()
        if not value:
            raise InvalidContactError(self.channel.value, contact, "empty contact")
        return value

    async def send(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any] | None = None,
    ) -> ChannelOutcome:
        opts = options or {}
        try:
            contact = self.normalize_contact(recipient)
        except InvalidContactError as e:
            logger.warning(f"Rejected {self.channel.value} contact {recipient}: {e.reason}")
            return ChannelOutcome.failed(recipient, self.channel, e.reason)

        if not await self._within_rate_limit(opts.get("recipient_id") or contact):
            return ChannelOutcome.failed(contact, self.channel, RATE_LIMITED, retryable=True)

        return await self._guarded(contact, content, opts)

    async def send_batch(
        self,
        recipients: list[str],
        content: RenderedContent,
        options: dict[str, Any] | None = None,
    ) -> list[ChannelOutcome]:
        """Send to many contacts of one logical recipient.

        The rate limit is charged once for the batch; invalid contacts are
        reported individually without blocking the valid ones.
        """
        opts = options or {}
        outcomes: dict[int, ChannelOutcome] = {}
        valid: list[tuple[int, str]] = []
        for index, raw in enumerate(recipients):
            try:
                valid.append((index, self.normalize_contact(raw)))
            except InvalidContactError as e:
                outcomes[index] = ChannelOutcome.failed(raw, self.channel, e.reason)

        if valid:
            limit_key = opts.get("recipient_id") or valid[0][1]
            if not await self._within_rate_limit(limit_key):
                for index, contact in valid:
                    outcomes[index] = ChannelOutcome.failed(
                        contact, self.channel, RATE_LIMITED, retryable=True
                    )
            else:
                delivered = await self._deliver_batch([c for _, c in valid], content, opts)
                for (index, _), outcome in zip(valid, delivered):
                    outcomes[index] = outcome

        return [outcomes[i] for i in range(len(recipients))]

    async def _within_rate_limit(self, recipient_key: str) -> bool:
        if self._rate_limiter is None:
            return True
        allowed = await self._rate_limiter.allow(recipient_key, self.channel)
        if not allowed:
            logger.info(f"{self.channel.value} send to {recipient_key} rejected by rate limit")
        return allowed

    async def _guarded(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> ChannelOutcome:
        try:
            provider_id = await asyncio.wait_for(
                self._deliver(contact, content, options), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.channel.value} send to {contact} timed out after {self.timeout}s"
            )
            return ChannelOutcome.failed(contact, self.channel, TIMEOUT, retryable=True)
        except DeliveryError as e:
            logger.error(f"{self.channel.value} delivery to {contact} failed: {e.reason}")
            return ChannelOutcome.failed(contact, self.channel, e.reason, retryable=e.retryable)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected {self.channel.value} error for {contact}: {e}")
            return ChannelOutcome.failed(contact, self.channel, str(e), retryable=True)
        return ChannelOutcome.sent(contact, self.channel, provider_id)

    async def _deliver_batch(
        self,
        contacts: list[str],
        content: RenderedContent,
        options: dict[str, Any],
    ) -> list[ChannelOutcome]:
        return list(
            await asyncio.gather(*(self._guarded(c, content, options) for c in contacts))
        )

    async def _deliver(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> str | None:
        raise NotImplementedError
