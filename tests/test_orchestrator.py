from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from notification_engine.delivery import Channel, NotificationStatus, Priority
from notification_engine.exceptions import InvalidRequestError
from notification_engine.models import NotificationRequest
from notification_engine.orchestrator import (
    EXPIRED,
    NO_ENABLED_CHANNELS,
    NO_RECIPIENTS,
    NotificationOrchestrator,
    OrchestratorConfig,
    aggregate_status,
)
from notification_engine.preferences import QuietHours
from notification_engine.queue import JobKind, JobStatus

ALL_CHANNELS = (Channel.EMAIL, Channel.SMS, Channel.PUSH, Channel.IN_APP)


def make_request(**overrides) -> NotificationRequest:
    fields = {
        "recipient_ids": ("u1",),
        "channels": (Channel.EMAIL, Channel.PUSH),
        "template": "welcome",
        "data": {"name": "Ada"},
    }
    fields.update(overrides)
    return NotificationRequest(**fields)


def quiet_hours_around_now() -> QuietHours:
    local = datetime.now(ZoneInfo("America/Toronto"))
    return QuietHours(
        enabled=True,
        start=(local - timedelta(hours=1)).time().replace(microsecond=0),
        end=(local + timedelta(hours=1)).time().replace(microsecond=0),
        timezone="America/Toronto",
    )


def test_aggregate_status():
    assert aggregate_status([True, True]) == NotificationStatus.SENT
    assert aggregate_status([True, False]) == NotificationStatus.PARTIAL
    assert aggregate_status([False, False]) == NotificationStatus.FAILED
    assert aggregate_status([]) == NotificationStatus.FAILED


def test_orchestrator_config_bounds():
    with pytest.raises(ValueError):
        OrchestratorConfig(group_batch_size=0)
    with pytest.raises(ValueError):
        OrchestratorConfig(group_success_threshold=1.5)


@pytest.mark.asyncio
class TestSendNotification:
    async def test_dispatches_only_channels_the_recipient_accepts(
        self, orchestrator, channel_adapters
    ):
        result = await orchestrator.send_notification(make_request(channels=ALL_CHANNELS))

        # SMS is opt-in, so it is neither dispatched nor reported.
        assert set(result.channels) == {Channel.EMAIL, Channel.PUSH, Channel.IN_APP}
        assert result.status == NotificationStatus.SENT
        assert channel_adapters[Channel.SMS].calls == 0
        channel_adapters[Channel.EMAIL].assert_sent("u1@example.com")
        assert result.channels[Channel.EMAIL].message_id.startswith("mem-")

    async def test_sms_disabled_recipient(self, orchestrator, channel_adapters):
        result = await orchestrator.send_notification(
            make_request(channels=(Channel.EMAIL, Channel.SMS, Channel.PUSH))
        )

        assert Channel.SMS not in result.channels
        assert result.channels[Channel.EMAIL].success
        assert result.channels[Channel.PUSH].success
        assert channel_adapters[Channel.SMS].sent_messages == []

    async def test_only_disabled_channels_requested(self, orchestrator):
        result = await orchestrator.send_notification(make_request(channels=(Channel.SMS,)))

        assert result.status == NotificationStatus.FAILED
        assert result.reason == NO_ENABLED_CHANNELS
        assert result.channels == {}

    async def test_sms_sent_once_enabled(self, orchestrator, preferences, channel_adapters):
        await preferences.set_channel("u1", Channel.SMS, True)

        result = await orchestrator.send_notification(make_request(channels=(Channel.SMS,)))

        assert result.status == NotificationStatus.SENT
        channel_adapters[Channel.SMS].assert_sent("+14165550101")

    async def test_invalid_request_enqueues_nothing(self, orchestrator, job_store):
        with pytest.raises(InvalidRequestError) as exc:
            await orchestrator.send_notification(make_request(channels=()))
        assert "channels" in exc.value.errors
        assert job_store.all_jobs() == []

    async def test_invalid_raw_request(self, orchestrator, job_store):
        with pytest.raises(InvalidRequestError):
            await orchestrator.send_notification(
                {"recipient_ids": ["u1"], "channels": ["fax"], "template": "welcome"}
            )
        with pytest.raises(InvalidRequestError):
            await orchestrator.send_notification({"channels": ["email"], "template": "welcome"})
        assert job_store.all_jobs() == []

    async def test_accepts_plain_dict(self, orchestrator, channel_adapters):
        result = await orchestrator.send_notification(
            {
                "recipient_ids": ["u2"],
                "channels": ["email"],
                "template": "welcome",
                "data": {"name": "Grace"},
            }
        )
        assert result.status == NotificationStatus.SENT
        sent = channel_adapters[Channel.EMAIL].sent_to("u2@example.com")
        assert sent[0].content.subject == "Hello Grace"

    async def test_same_request_delivers_once(self, orchestrator, channel_adapters):
        request = make_request(channels=(Channel.EMAIL,))

        first = await orchestrator.send_notification(request)
        second = await orchestrator.send_notification(request)

        assert channel_adapters[Channel.EMAIL].calls == 1
        assert first.status == NotificationStatus.SENT
        assert second.status == NotificationStatus.SENT

    async def test_resending_a_failed_request_still_fails(self, orchestrator, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_with("no such mailbox", retryable=False)
        request = make_request(channels=(Channel.EMAIL,))

        first = await orchestrator.send_notification(request)
        second = await orchestrator.send_notification(request)

        assert channel_adapters[Channel.EMAIL].calls == 1
        assert first.status == NotificationStatus.FAILED
        assert second.status == NotificationStatus.FAILED
        assert "no such mailbox" in second.channels[Channel.EMAIL].error

    async def test_failing_channel_does_not_block_others(self, orchestrator, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_with("mailbox unavailable", retryable=False)

        result = await orchestrator.send_notification(make_request())

        assert result.status == NotificationStatus.PARTIAL
        assert result.failed_channels == [Channel.EMAIL]
        email = result.channels[Channel.EMAIL]
        assert not email.success
        assert not email.retryable
        assert "mailbox unavailable" in email.error
        assert email.failed_recipients == ("u1",)
        assert result.channels[Channel.PUSH].success

    async def test_all_channels_failing(self, orchestrator, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_with("rejected")
        channel_adapters[Channel.PUSH].fail_with("unregistered")

        result = await orchestrator.send_notification(make_request())

        assert result.status == NotificationStatus.FAILED
        assert set(result.failed_channels) == {Channel.EMAIL, Channel.PUSH}

    async def test_retryable_failure_is_retried_by_workers(
        self, orchestrator, channel_adapters, workers, job_store
    ):
        channel_adapters[Channel.EMAIL].fail_next("connection reset", retryable=True)

        result = await orchestrator.send_notification(make_request(channels=(Channel.EMAIL,)))

        email = result.channels[Channel.EMAIL]
        assert not email.success
        assert email.retryable

        await workers.drain()

        channel_adapters[Channel.EMAIL].assert_sent("u1@example.com")
        (job,) = job_store.all_jobs()
        assert job.status == JobStatus.SUCCEEDED
        assert job.attempts == 2

    async def test_retry_ceiling_moves_job_to_dead_letters(
        self, orchestrator, channel_adapters, workers, queue
    ):
        channel_adapters[Channel.EMAIL].fail_with("service unavailable", retryable=True)

        await orchestrator.send_notification(make_request(channels=(Channel.EMAIL,)))
        await workers.drain()

        assert channel_adapters[Channel.EMAIL].calls == 3
        dead = await queue.dead_letters()
        assert len(dead) == 1
        assert dead[0].attempts == 3
        assert dead[0].last_error == "service unavailable"

    async def test_quiet_hours_defer_deferrable_channels(
        self, orchestrator, preferences, channel_adapters, job_store
    ):
        await preferences.update("u1", {"quiet_hours": quiet_hours_around_now()})

        result = await orchestrator.send_notification(make_request())

        # Email is not held back; push waits for the window to close.
        channel_adapters[Channel.EMAIL].assert_sent("u1@example.com")
        assert channel_adapters[Channel.PUSH].calls == 0
        push = result.channels[Channel.PUSH]
        assert push.success
        assert push.deferred == 1
        assert push.sent == 0
        deferred = [j for j in job_store.all_jobs() if j.channel == Channel.PUSH]
        assert len(deferred) == 1
        assert deferred[0].status == JobStatus.QUEUED
        assert deferred[0].scheduled_at > datetime.now(timezone.utc)

    async def test_high_priority_bypasses_quiet_hours(
        self, orchestrator, preferences, channel_adapters
    ):
        await preferences.update("u1", {"quiet_hours": quiet_hours_around_now()})

        result = await orchestrator.send_notification(make_request(priority=Priority.HIGH))

        assert result.channels[Channel.PUSH].sent == 1
        assert channel_adapters[Channel.PUSH].calls == 1

    async def test_scheduled_request_is_queued(
        self, orchestrator, channel_adapters, job_store, queue
    ):
        later = datetime.now(timezone.utc) + timedelta(hours=2)

        result = await orchestrator.send_notification(make_request(scheduled_at=later))

        assert result.status == NotificationStatus.SCHEDULED
        assert channel_adapters[Channel.EMAIL].calls == 0
        (job,) = job_store.all_jobs()
        assert job.kind == JobKind.DEFERRED_REQUEST
        assert job.scheduled_at == later

        # Fire it as a worker would at the scheduled time.
        claimed = await job_store.claim(job.id, later, 30)
        outcome = await queue.process(claimed)

        assert outcome.success
        channel_adapters[Channel.EMAIL].assert_sent("u1@example.com")

    async def test_naive_scheduled_at_is_read_as_utc(self, orchestrator, channel_adapters):
        result = await orchestrator.send_notification(
            {
                "recipient_ids": ["u1"],
                "channels": ["email"],
                "template": "welcome",
                "data": {"name": "Ada"},
                "scheduled_at": "2099-01-01T09:00:00",
            }
        )

        assert result.status == NotificationStatus.SCHEDULED
        assert channel_adapters[Channel.EMAIL].calls == 0

    async def test_naive_expires_at_in_the_past(self, orchestrator, channel_adapters):
        past = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=1)

        result = await orchestrator.send_notification(make_request(expires_at=past))

        assert result.status == NotificationStatus.FAILED
        assert result.reason == EXPIRED
        assert channel_adapters[Channel.EMAIL].calls == 0

    async def test_expired_request(self, orchestrator, channel_adapters):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)

        result = await orchestrator.send_notification(make_request(expires_at=past))

        assert result.status == NotificationStatus.FAILED
        assert result.reason == EXPIRED
        assert channel_adapters[Channel.EMAIL].calls == 0

    async def test_group_without_members(self, orchestrator):
        result = await orchestrator.send_notification(
            make_request(recipient_ids=(), group_id="nobody")
        )
        assert result.status == NotificationStatus.FAILED
        assert result.reason == NO_RECIPIENTS

    async def test_group_id_expands_members(self, orchestrator, channel_adapters):
        result = await orchestrator.send_notification(
            make_request(recipient_ids=(), group_id="team", channels=(Channel.EMAIL,))
        )
        assert result.status == NotificationStatus.SENT
        assert result.channels[Channel.EMAIL].sent == 3

    async def test_directory_outage(
        self, preferences, templates, queue, audit, channel_adapters
    ):
        directory = AsyncMock()
        directory.get_group_members.side_effect = ConnectionError("directory down")
        orchestrator = NotificationOrchestrator(preferences, templates, queue, directory, audit)

        result = await orchestrator.send_notification(
            make_request(recipient_ids=(), group_id="team")
        )

        assert result.status == NotificationStatus.FAILED
        assert result.reason == "directory_unavailable"

    async def test_missing_contact_fails_that_channel_only(self, orchestrator):
        result = await orchestrator.send_notification(make_request(recipient_ids=("u3",)))

        assert result.status == NotificationStatus.PARTIAL
        assert result.channels[Channel.EMAIL].success
        assert result.channels[Channel.PUSH].error == "no_contact"
        assert not result.channels[Channel.PUSH].retryable

    async def test_unknown_template_fails_every_channel(self, orchestrator, channel_adapters):
        result = await orchestrator.send_notification(make_request(template="missing"))

        assert result.status == NotificationStatus.FAILED
        assert "No template" in result.channels[Channel.EMAIL].error
        assert channel_adapters[Channel.EMAIL].calls == 0
        assert channel_adapters[Channel.PUSH].calls == 0

    async def test_renders_in_recipient_language(
        self, orchestrator, preferences, channel_adapters
    ):
        await preferences.update("u1", {"language": "fr"})

        await orchestrator.send_notification(make_request(channels=(Channel.EMAIL,)))

        (message,) = channel_adapters[Channel.EMAIL].sent_to("u1@example.com")
        assert message.content.subject == "Bonjour Ada"
        assert "<b>Ada</b>" in message.content.body_html

    async def test_preference_outage_fails_open(
        self, templates, queue, directory, audit, channel_adapters
    ):
        from notification_engine.preferences import PreferenceResolver

        store = AsyncMock()
        store.get.side_effect = ConnectionError("preferences down")
        orchestrator = NotificationOrchestrator(
            PreferenceResolver(store), templates, queue, directory, audit
        )

        result = await orchestrator.send_notification(make_request(channels=(Channel.EMAIL,)))

        assert result.status == NotificationStatus.SENT
        channel_adapters[Channel.EMAIL].assert_sent("u1@example.com")

    async def test_audit_record_written(self, orchestrator, audit):
        request = make_request(correlation_id="corr-1")

        result = await orchestrator.send_notification(request)

        (record,) = audit.for_request(request.request_id)
        assert record.result == result
        assert record.recipient_ids == ("u1",)
        assert record.correlation_id == "corr-1"

    async def test_audit_failure_does_not_fail_send(
        self, preferences, templates, queue, directory
    ):
        audit = AsyncMock()
        audit.append.side_effect = RuntimeError("audit down")
        orchestrator = NotificationOrchestrator(preferences, templates, queue, directory, audit)

        result = await orchestrator.send_notification(make_request())

        assert result.status == NotificationStatus.SENT

    async def test_send_is_instrumented(self, orchestrator, hook_registry):
        seen: list[tuple[str, dict]] = []

        async def hook(operation, attributes, next_handler):
            seen.append((operation, dict(attributes)))
            return await next_handler()

        hook_registry.register(hook, operations=["notification.*"])

        request = make_request()
        await orchestrator.send_notification(request)

        operation, attributes = seen[0]
        assert operation == "notification.send"
        assert attributes["notification.request_id"] == request.request_id


@pytest.mark.asyncio
class TestGroupsAndRetries:
    async def test_group_all_members_succeed(self, orchestrator):
        result = await orchestrator.send_to_group("team", make_request(channels=(Channel.EMAIL,)))

        assert result.status == NotificationStatus.SENT
        assert (result.total, result.successful, result.failed) == (3, 3, 0)
        assert result.errors == {}

    async def test_group_partial_above_threshold(self, orchestrator, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_for("u3@example.com", "mailbox full")

        result = await orchestrator.send_to_group("team", make_request(channels=(Channel.EMAIL,)))

        assert result.status == NotificationStatus.PARTIAL
        assert result.successful == 2
        assert set(result.errors) == {"u3"}

    async def test_group_below_threshold_fails(self, orchestrator, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_for("u2@example.com", "mailbox full")
        channel_adapters[Channel.EMAIL].fail_for("u3@example.com", "mailbox full")

        result = await orchestrator.send_to_group("team", make_request(channels=(Channel.EMAIL,)))

        assert result.status == NotificationStatus.FAILED
        assert result.successful == 1
        assert set(result.errors) == {"u2", "u3"}

    async def test_group_batches(self, preferences, templates, queue, directory, audit):
        orchestrator = NotificationOrchestrator(
            preferences,
            templates,
            queue,
            directory,
            audit,
            config=OrchestratorConfig(group_batch_size=1),
        )
        result = await orchestrator.send_to_group("team", make_request(channels=(Channel.EMAIL,)))
        assert result.successful == 3

    async def test_unknown_group(self, orchestrator):
        result = await orchestrator.send_to_group("ghosts", make_request())
        assert result.status == NotificationStatus.FAILED
        assert result.errors == {"__group__": NO_RECIPIENTS}

    async def test_retry_failed_targets_failed_channels(self, orchestrator, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_with("rejected")
        request = make_request()
        first = await orchestrator.send_notification(request)
        assert first.status == NotificationStatus.PARTIAL

        channel_adapters[Channel.EMAIL].succeed()
        retried = await orchestrator.retry_failed(request, first)

        assert retried.id != first.id
        assert set(retried.channels) == {Channel.EMAIL}
        assert retried.status == NotificationStatus.SENT
        assert channel_adapters[Channel.PUSH].calls == 1

    async def test_retry_failed_without_failures(self, orchestrator):
        request = make_request()
        result = await orchestrator.send_notification(request)
        assert await orchestrator.retry_failed(request, result) is result
