"""Firebase Cloud Messaging (HTTP v1) push adapter."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx

from ...correlation import get_correlation_id
from ...delivery import Channel, ChannelOutcome
from ...exceptions import DeliveryError, InvalidContactError
from ..base import BaseChannelAdapter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ...delivery import RenderedContent
    from ...ratelimit.limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

FCM_ENDPOINT = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
MAX_BATCH_SIZE = 500

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_\-:.]{32,4096}$")

RETRYABLE_ERROR_CODES = frozenset({"UNAVAILABLE", "INTERNAL", "QUOTA_EXCEEDED"})
INVALID_TOKEN_CODES = frozenset({"UNREGISTERED", "INVALID_ARGUMENT"})


def fcm_error_code(response: httpx.Response) -> str | None:
    """Extract the FCM error code (``details[].errorCode``, else ``error.status``)."""
    try:
        error = response.json().get("error", {})
    except ValueError:
        return None
    for detail in error.get("details", []):
        if detail.get("errorCode"):
            return str(detail["errorCode"])
    status = error.get("status")
    return str(status) if status else None


def is_retryable_fcm_error(code: str | None, status_code: int) -> bool:
    if code in RETRYABLE_ERROR_CODES:
        return True
    if code in INVALID_TOKEN_CODES:
        return False
    return status_code == 429 or status_code >= 500


class FcmPushAdapter(BaseChannelAdapter):
    """
    Push adapter over the FCM HTTP v1 API using httpx.

    FCM v1 accepts one token per request, so a batch is sent as concurrent
    requests in chunks of at most ``max_batch`` tokens. Tokens reported as
    unregistered are passed to ``on_invalid_token`` for cleanup.
    """

    channel = Channel.PUSH

    def __init__(
        self,
        project_id: str,
        access_token: str | Callable[[], Awaitable[str]],
        timeout: float = 10.0,
        *,
        client: httpx.AsyncClient | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        max_batch: int = MAX_BATCH_SIZE,
        on_invalid_token: Callable[[str], Awaitable[None]] | None = None,
    ):
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self.project_id = project_id
        self._access_token = access_token
        self._client = client
        self.max_batch = min(max_batch, MAX_BATCH_SIZE)
        self._on_invalid_token = on_invalid_token

    @property
    def endpoint(self) -> str:
        return FCM_ENDPOINT.format(project_id=self.project_id)

    def normalize_contact(self, contact: str) -> str:
        token = contact.strip()
        if not TOKEN_PATTERN.match(token):
            raise InvalidContactError(self.channel.value, contact, "invalid push token")
        return token

    async def _token(self) -> str:
        if isinstance(self._access_token, str):
            return self._access_token
        return await self._access_token()

    def build_message(
        self, token: str, content: RenderedContent, options: dict[str, Any]
    ) -> dict[str, Any]:
        data = {str(k): str(v) for k, v in content.data.items()}
        if options.get("request_id"):
            data["request_id"] = str(options["request_id"])
        message: dict[str, Any] = {
            "token": token,
            "notification": {"title": content.title or "", "body": content.body_text},
        }
        if data:
            message["data"] = data
        if options.get("priority") == "high":
            message["android"] = {"priority": "HIGH"}
            message["apns"] = {"headers": {"apns-priority": "10"}}
        return {"message": message}

    async def _post(
        self, client: httpx.AsyncClient, token: str, body: dict[str, Any]
    ) -> str | None:
        headers = {
            "Authorization": f"Bearer {await self._token()}",
            "X-Correlation-ID": get_correlation_id() or "",
        }
        try:
            response = await client.post(self.endpoint, json=body, headers=headers)
        except httpx.TransportError as e:
            raise DeliveryError(self.channel.value, token, str(e), retryable=True) from e

        if response.is_success:
            return str(response.json().get("name", "")) or None

        code = fcm_error_code(response)
        if code in INVALID_TOKEN_CODES and self._on_invalid_token is not None:
            try:
                await self._on_invalid_token(token)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Invalid-token cleanup failed for {token[:12]}...: {e}")
        raise DeliveryError(
            self.channel.value,
            token,
            code or f"HTTP {response.status_code}",
            retryable=is_retryable_fcm_error(code, response.status_code),
        )

    async def _deliver(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> str | None:
        body = self.build_message(contact, content, options)
        if self._client is not None:
            return await self._post(self._client, contact, body)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._post(client, contact, body)

    async def _deliver_batch(
        self,
        contacts: list[str],
        content: RenderedContent,
        options: dict[str, Any],
    ) -> list[ChannelOutcome]:
        outcomes: list[ChannelOutcome] = []
        for start in range(0, len(contacts), self.max_batch):
            chunk = contacts[start : start + self.max_batch]
            outcomes.extend(
                await asyncio.gather(*(self._guarded(t, content, options) for t in chunk))
            )
        sent = sum(1 for o in outcomes if o.success)
        logger.info(f"Push batch: {sent}/{len(outcomes)} tokens accepted by FCM")
        return outcomes
