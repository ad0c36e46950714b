"""Twilio SMS adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ...delivery import Channel
from ...exceptions import DeliveryError, InvalidContactError
from ...templates.engine import SMS_MAX_LENGTH, truncate
from ..base import BaseChannelAdapter
from .phone import normalize_phone

if TYPE_CHECKING:
    from ...delivery import RenderedContent
    from ...ratelimit.limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

# Authentication hiccup, Twilio-side throttling, queue overflow, account
# suspended temporarily, unreachable handset.
RETRYABLE_CODES = frozenset({20003, 20429, 30001, 30002, 30003})
# Invalid 'To' number, recipient unsubscribed (STOP), not a mobile number.
TERMINAL_CODES = frozenset({21211, 21610, 21614})


def is_retryable_twilio_error(code: int | None, status: int | None) -> bool:
    """Classify a Twilio REST failure by error code, then by HTTP status."""
    if code in RETRYABLE_CODES:
        return True
    if code in TERMINAL_CODES:
        return False
    return status is not None and (status == 429 or status >= 500)


class TwilioSmsAdapter(BaseChannelAdapter):
    """
    Twilio SMS adapter.

    The Twilio client is synchronous, so each request runs in a worker thread.
    Pass ``client`` to reuse a configured ``twilio.rest.Client``.
    """

    channel = Channel.SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        *,
        client: Any | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        max_length: int = SMS_MAX_LENGTH,
        default_country_code: str = "1",
    ):
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.max_length = max_length
        self.default_country_code = default_country_code
        self._client = client

    def normalize_contact(self, contact: str) -> str:
        phone = normalize_phone(contact, self.default_country_code)
        if phone is None:
            raise InvalidContactError(self.channel.value, contact, "invalid phone number")
        return phone

    def _get_client(self) -> Any:
        if self._client is None:
            from twilio.rest import Client as TwilioClient

            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    async def _deliver(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> str | None:
        from twilio.base.exceptions import TwilioRestException

        client = self._get_client()
        body = truncate(content.body_text, self.max_length)
        try:
            message = await asyncio.to_thread(
                client.messages.create,
                to=contact,
                from_=options.get("from_number") or self.from_number,
                body=body,
            )
        except TwilioRestException as e:
            logger.error(f"Twilio API error {e.code} for {contact}: {e.msg}")
            raise DeliveryError(
                self.channel.value,
                contact,
                f"twilio_{e.code}: {e.msg}" if e.code else str(e.msg),
                retryable=is_retryable_twilio_error(e.code, e.status),
            ) from e

        logger.info(f"SMS sent via Twilio to {contact} (SID: {message.sid})")
        return str(message.sid)
