"""NotificationOrchestrator: validate, resolve, render, fan out, aggregate, audit."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, cast

from ..correlation import ensure_correlation_id, set_correlation_id
from ..delivery import Channel, NotificationStatus
from ..instrumentation import get_hook_registry
from ..models import (
    AuditRecord,
    ChannelResult,
    GroupSendResult,
    NotificationRequest,
    NotificationResult,
)
from ..preferences.resolver import Decision
from ..queue.job import DeliveryJob, JobKind
from .digest import DigestService

if TYPE_CHECKING:
    from ..delivery import RenderedContent
    from ..ports.stores import IAuditStore, IRecipientDirectory
    from ..preferences.model import DigestPeriod, Preferences
    from ..preferences.resolver import ChannelDecision, PreferenceResolver
    from ..queue.queue import DeliveryQueue
    from ..templates.engine import TemplateEngine

logger = logging.getLogger(__name__)

NO_RECIPIENTS = "no_recipients"
NO_ENABLED_CHANNELS = "no_enabled_channels"
EXPIRED = "expired"
DIRECTORY_UNAVAILABLE = "directory_unavailable"
NO_CONTACT = "no_contact"


@dataclass(frozen=True)
class OrchestratorConfig:
    """Group fan-out bounds and the group success threshold.

    A group send is ``sent`` when every member succeeded, ``partial`` when
    the successful share reaches ``group_success_threshold``, else ``failed``.
    """

    group_batch_size: int = 10
    group_success_threshold: float = 0.5

    def __post_init__(self) -> None:
        if self.group_batch_size < 1:
            raise ValueError("group_batch_size must be >= 1")
        if not 0.0 <= self.group_success_threshold <= 1.0:
            raise ValueError("group_success_threshold must be within [0, 1]")


@dataclass(frozen=True)
class _Target:
    recipient_id: str
    preferences: Preferences
    decision: ChannelDecision


@dataclass(frozen=True)
class _RecipientOutcome:
    recipient_id: str
    success: bool
    deferred: bool = False
    message_id: str | None = None
    error: str | None = None
    retryable: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def aggregate_status(results: list[bool]) -> NotificationStatus:
    if results and all(results):
        return NotificationStatus.SENT
    if any(results):
        return NotificationStatus.PARTIAL
    return NotificationStatus.FAILED


class NotificationOrchestrator:
    """
    Coordinates one notification request end to end.

    Requested channels are intersected with each recipient's preferences
    before anything is dispatched; channels nobody accepts do not appear in
    the result. Content is rendered once per (channel, language). Each channel
    runs as an independent task, and each delivery goes through the queue so
    retryable failures keep retrying after this call returns. Channel failures
    are captured in the result and never raised.
    """

    def __init__(
        self,
        preferences: PreferenceResolver,
        templates: TemplateEngine,
        queue: DeliveryQueue,
        directory: IRecipientDirectory,
        audit: IAuditStore,
        *,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._preferences = preferences
        self._templates = templates
        self._queue = queue
        self._directory = directory
        self._audit = audit
        self.config = config or OrchestratorConfig()
        self.digests = DigestService(preferences, audit, queue, self.send_notification)
        queue.register_handler(JobKind.DEFERRED_REQUEST, self._run_deferred)

    # -- inbound ----------------------------------------------------------

    async def send_notification(
        self, request: NotificationRequest | dict[str, Any]
    ) -> NotificationResult:
        """Send one request. Raises :class:`InvalidRequestError` only for
        malformed requests; every other failure is reported in the result."""
        if not isinstance(request, NotificationRequest):
            request = NotificationRequest.parse(request)
        request.validate_shape()

        correlation_id = request.correlation_id or ensure_correlation_id()
        set_correlation_id(correlation_id)
        registry = get_hook_registry()
        return cast(
            "NotificationResult",
            await registry.execute_all(
                "notification.send",
                {
                    "notification.request_id": request.request_id,
                    "notification.template": request.template,
                    "notification.channels": ",".join(c.value for c in request.channels),
                    "correlation_id": correlation_id,
                },
                lambda: self._send(request, correlation_id),
            ),
        )

    async def send_to_group(
        self, group_id: str, request: NotificationRequest | dict[str, Any]
    ) -> GroupSendResult:
        """Send ``request`` to each member of ``group_id``, ``group_batch_size``
        members at a time. Member errors are collected, never raised."""
        if not isinstance(request, NotificationRequest):
            request = NotificationRequest.parse(request)
        request = request.model_copy(update={"group_id": group_id, "recipient_ids": ()})
        request.validate_shape()

        registry = get_hook_registry()
        return cast(
            "GroupSendResult",
            await registry.execute_all(
                "notification.group",
                {
                    "notification.group_id": group_id,
                    "notification.request_id": request.request_id,
                    "correlation_id": request.correlation_id or ensure_correlation_id(),
                },
                lambda: self._send_to_group(group_id, request),
            ),
        )

    async def retry_failed(
        self, request: NotificationRequest, result: NotificationResult
    ) -> NotificationResult:
        """Re-issue ``request`` restricted to the channels that failed in ``result``."""
        failed = result.failed_channels
        if not failed:
            return result
        retry = request.model_copy(
            update={
                "request_id": f"{request.request_id}:retry:{_utcnow().strftime('%Y%m%d%H%M%S%f')}",
                "channels": tuple(c for c in request.channels if c in failed),
                "scheduled_at": None,
            }
        )
        logger.info(
            "Retrying request %s on %s as %s",
            request.request_id,
            ", ".join(c.value for c in retry.channels),
            retry.request_id,
        )
        return await self.send_notification(retry)

    async def schedule_digest(self, period: DigestPeriod, at: datetime | None = None) -> int:
        return await self.digests.schedule_digest(period, at)

    # -- pipeline ---------------------------------------------------------

    async def _send(self, request: NotificationRequest, correlation_id: str) -> NotificationResult:
        now = _utcnow()
        try:
            recipients = await self._expand_recipients(request)
        except Exception as e:  # noqa: BLE001
            logger.error("Recipient lookup failed for %s: %s", request.request_id, e)
            return await self._finish(request, [], NotificationResult.rejected(
                request.request_id, DIRECTORY_UNAVAILABLE
            ), correlation_id)

        if not recipients:
            return await self._finish(
                request, [], NotificationResult.rejected(request.request_id, NO_RECIPIENTS),
                correlation_id,
            )

        if request.scheduled_at is not None and request.is_scheduled(now):
            result = await self._schedule(request, request.scheduled_at, correlation_id)
            return await self._finish(request, recipients, result, correlation_id)

        if request.is_expired(now):
            return await self._finish(
                request, recipients, NotificationResult.rejected(request.request_id, EXPIRED),
                correlation_id,
            )

        plan = await self._plan(request, recipients, now)
        if not plan:
            return await self._finish(
                request,
                recipients,
                NotificationResult.rejected(request.request_id, NO_ENABLED_CHANNELS),
                correlation_id,
            )

        rendered = await self._render_all(request, plan)
        channels = list(plan)
        gathered = await asyncio.gather(
            *(
                self._dispatch_channel(request, c, plan[c], rendered, correlation_id)
                for c in channels
            ),
            return_exceptions=True,
        )
        channel_results: dict[Channel, ChannelResult] = {}
        for channel, outcome in zip(channels, gathered):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Channel %s crashed for %s: %s", channel.value, request.request_id, outcome
                )
                channel_results[channel] = ChannelResult(
                    success=False,
                    error=str(outcome),
                    failed=len(plan[channel]),
                    failed_recipients=tuple(t.recipient_id for t in plan[channel]),
                )
            else:
                channel_results[channel] = outcome

        result = NotificationResult(
            id=request.request_id,
            status=aggregate_status([r.success for r in channel_results.values()]),
            channels=channel_results,
        )
        return await self._finish(request, recipients, result, correlation_id)

    async def _expand_recipients(self, request: NotificationRequest) -> list[str]:
        recipients = list(request.recipient_ids)
        if request.group_id:
            recipients.extend(await self._directory.get_group_members(request.group_id))
        # De-duplicate, keeping order.
        return list(dict.fromkeys(r for r in recipients if r))

    async def _schedule(
        self, request: NotificationRequest, scheduled_at: datetime, correlation_id: str
    ) -> NotificationResult:
        job = DeliveryJob.for_request(
            request.model_dump(mode="json", exclude={"scheduled_at"}),
            request_id=request.request_id,
            scheduled_at=scheduled_at,
            expires_at=request.expires_at,
            correlation_id=correlation_id,
            max_attempts=self._queue.max_attempts,
        )
        await self._queue.enqueue(job)
        logger.info(
            "Request %s scheduled for %s", request.request_id, scheduled_at.isoformat()
        )
        return NotificationResult(id=request.request_id, status=NotificationStatus.SCHEDULED)

    async def _run_deferred(self, job: DeliveryJob) -> None:
        request = NotificationRequest.model_validate({**job.payload, "scheduled_at": None})
        result = await self.send_notification(request)
        logger.info("Deferred request %s fired: %s", request.request_id, result.status.value)

    async def _plan(
        self, request: NotificationRequest, recipients: list[str], now: datetime
    ) -> dict[Channel, list[_Target]]:
        evaluations = await asyncio.gather(
            *(
                self._preferences.evaluate(
                    r, request.channels, request.category, request.priority, now
                )
                for r in recipients
            )
        )
        plan: dict[Channel, list[_Target]] = {}
        for recipient_id, (prefs, decisions) in zip(recipients, evaluations):
            for decision in decisions:
                if decision.dispatch:
                    plan.setdefault(decision.channel, []).append(
                        _Target(recipient_id, prefs, decision)
                    )
                else:
                    logger.debug(
                        "%s skipped for %s: %s",
                        decision.channel.value,
                        recipient_id,
                        decision.reason,
                    )
        return plan

    def _language(self, request: NotificationRequest, target: _Target) -> str:
        return request.language or target.preferences.language or self._templates.default_language

    async def _render_all(
        self, request: NotificationRequest, plan: dict[Channel, list[_Target]]
    ) -> dict[tuple[Channel, str], RenderedContent | Exception]:
        keys = list(
            dict.fromkeys(
                (channel, self._language(request, t))
                for channel, targets in plan.items()
                for t in targets
            )
        )
        rendered = await asyncio.gather(
            *(
                self._templates.render(request.template, lang, channel, request.data)
                for channel, lang in keys
            ),
            return_exceptions=True,
        )
        contents: dict[tuple[Channel, str], RenderedContent | Exception] = {}
        for key, content in zip(keys, rendered):
            if isinstance(content, Exception):
                logger.error(
                    "Render of %s for %s/%s failed: %s",
                    request.template,
                    key[0].value,
                    key[1],
                    content,
                )
            elif isinstance(content, BaseException):
                raise content
            contents[key] = content
        return contents

    async def _dispatch_channel(
        self,
        request: NotificationRequest,
        channel: Channel,
        targets: list[_Target],
        rendered: dict[tuple[Channel, str], RenderedContent | Exception],
        correlation_id: str,
    ) -> ChannelResult:
        outcomes = await asyncio.gather(
            *(
                self._deliver(
                    request,
                    channel,
                    t,
                    rendered[(channel, self._language(request, t))],
                    correlation_id,
                )
                for t in targets
            ),
            return_exceptions=True,
        )
        recipient_outcomes = [
            o
            if isinstance(o, _RecipientOutcome)
            else _RecipientOutcome(t.recipient_id, success=False, error=str(o))
            for t, o in zip(targets, outcomes)
        ]
        return self._channel_result(recipient_outcomes)

    async def _deliver(
        self,
        request: NotificationRequest,
        channel: Channel,
        target: _Target,
        content: RenderedContent | Exception,
        correlation_id: str,
    ) -> _RecipientOutcome:
        recipient_id = target.recipient_id
        if isinstance(content, Exception):
            return _RecipientOutcome(recipient_id, success=False, error=str(content))

        contacts = await self._directory.get_contacts(recipient_id, channel)
        if not contacts:
            return _RecipientOutcome(recipient_id, success=False, error=NO_CONTACT)

        job = DeliveryJob.for_delivery(
            request_id=request.request_id,
            channel=channel,
            recipient_id=recipient_id,
            contacts=contacts,
            content=content,
            max_attempts=self._queue.max_attempts,
            expires_at=request.expires_at,
            correlation_id=correlation_id,
        )
        job.payload = {
            "category": request.category,
            "priority": request.priority.value,
            "unsubscribe_token": target.preferences.unsubscribe_token,
        }

        if target.decision.decision == Decision.DEFER:
            job.scheduled_at = target.decision.defer_until or job.scheduled_at
            await self._queue.enqueue(job)
            logger.info(
                "%s to %s deferred until %s (quiet hours)",
                channel.value,
                recipient_id,
                job.scheduled_at.isoformat(),
            )
            return _RecipientOutcome(recipient_id, success=True, deferred=True)

        outcome = await self._queue.dispatch(job)
        if outcome.success:
            return _RecipientOutcome(
                recipient_id, success=True, message_id=outcome.provider_message_id
            )
        return _RecipientOutcome(
            recipient_id,
            success=False,
            error=outcome.error,
            retryable=outcome.retrying,
        )

    @staticmethod
    def _channel_result(outcomes: list[_RecipientOutcome]) -> ChannelResult:
        failed = [o for o in outcomes if not o.success]
        message_ids = [o.message_id for o in outcomes if o.message_id]
        errors = sorted({o.error for o in failed if o.error})
        return ChannelResult(
            success=not failed,
            message_id=message_ids[0] if message_ids else None,
            error="; ".join(errors) or None,
            retryable=any(o.retryable for o in failed),
            sent=sum(1 for o in outcomes if o.success and not o.deferred),
            deferred=sum(1 for o in outcomes if o.deferred),
            failed=len(failed),
            failed_recipients=tuple(o.recipient_id for o in failed),
        )

    async def _finish(
        self,
        request: NotificationRequest,
        recipients: list[str],
        result: NotificationResult,
        correlation_id: str,
    ) -> NotificationResult:
        record = AuditRecord.for_result(request, recipients, result, correlation_id)
        try:
            await self._audit.append(record)
        except Exception as e:  # noqa: BLE001
            logger.error("Audit append failed for %s: %s", request.request_id, e)
        if result.status == NotificationStatus.PARTIAL:
            logger.warning(
                "Request %s partially delivered, failed channels: %s",
                request.request_id,
                ", ".join(c.value for c in result.failed_channels),
            )
        else:
            logger.info(
                "Request %s finished: %s%s",
                request.request_id,
                result.status.value,
                f" ({result.reason})" if result.reason else "",
            )
        return result

    async def _send_to_group(
        self, group_id: str, request: NotificationRequest
    ) -> GroupSendResult:
        try:
            members = list(dict.fromkeys(await self._directory.get_group_members(group_id)))
        except Exception as e:  # noqa: BLE001
            logger.error("Group %s lookup failed: %s", group_id, e)
            return GroupSendResult(
                group_id=group_id,
                status=NotificationStatus.FAILED,
                errors={"__group__": DIRECTORY_UNAVAILABLE},
            )
        if not members:
            return GroupSendResult(
                group_id=group_id,
                status=NotificationStatus.FAILED,
                errors={"__group__": NO_RECIPIENTS},
            )

        results: list[NotificationResult] = []
        errors: dict[str, str] = {}
        size = self.config.group_batch_size
        for start in range(0, len(members), size):
            batch = members[start : start + size]
            sent = await asyncio.gather(
                *(self.send_notification(self._member_request(request, m)) for m in batch),
                return_exceptions=True,
            )
            for member, outcome in zip(batch, sent):
                if isinstance(outcome, BaseException):
                    errors[member] = str(outcome)
                    continue
                results.append(outcome)
                if outcome.status == NotificationStatus.FAILED:
                    errors[member] = outcome.reason or "; ".join(
                        f"{c.value}: {r.error}" for c, r in outcome.channels.items() if r.error
                    )

        successful = sum(1 for r in results if r.status != NotificationStatus.FAILED)
        failed = len(members) - successful
        if failed == 0:
            status = NotificationStatus.SENT
        elif successful / len(members) >= self.config.group_success_threshold and successful:
            status = NotificationStatus.PARTIAL
        else:
            status = NotificationStatus.FAILED
        logger.info(
            "Group %s: %d/%d members notified (%s)",
            group_id,
            successful,
            len(members),
            status.value,
        )
        return GroupSendResult(
            group_id=group_id,
            status=status,
            total=len(members),
            successful=successful,
            failed=failed,
            results=tuple(results),
            errors=errors,
        )

    @staticmethod
    def _member_request(request: NotificationRequest, member: str) -> NotificationRequest:
        return request.model_copy(
            update={
                "recipient_ids": (member,),
                "group_id": None,
                "request_id": f"{request.request_id}:{member}",
            }
        )


__all__ = [
    "EXPIRED",
    "NO_ENABLED_CHANNELS",
    "NO_RECIPIENTS",
    "NotificationOrchestrator",
    "OrchestratorConfig",
    "aggregate_status",
]
