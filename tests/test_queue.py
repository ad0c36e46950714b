from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from notification_engine.adapters.memory import InMemoryJobStore
from notification_engine.channels import InMemoryChannelAdapter
from notification_engine.delivery import Channel, RenderedContent
from notification_engine.exceptions import JobStateError
from notification_engine.health import HealthRegistry
from notification_engine.queue import (
    DeadLetterHandler,
    DeliveryJob,
    DeliveryQueue,
    DeliveryWorkerPool,
    JobKind,
    JobStatus,
    QueueConfig,
    RetryPolicy,
    idempotency_key,
)

CONTENT = RenderedContent(channel=Channel.EMAIL, body_text="hi", subject="Hi")


def email_job(request_id: str = "req-1", contacts: list[str] | None = None, **kw) -> DeliveryJob:
    return DeliveryJob.for_delivery(
        request_id=request_id,
        channel=Channel.EMAIL,
        recipient_id="u1",
        contacts=contacts or ["u1@example.com"],
        content=CONTENT,
        **kw,
    )


def no_delay(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, base_delay=0, max_delay=0, jitter=False)


class TestRetryPolicy:
    def test_exponential_backoff_capped(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=10.0, jitter=False)
        assert [policy.delay_for_attempt(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 10.0]
        assert policy.delay_for_attempt(0) == 0.0

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(base_delay=4.0, max_delay=100.0, jitter=True)
        for _ in range(50):
            assert 2.0 <= policy.delay_for_attempt(1) <= 6.0

    def test_should_retry(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1)
        assert policy.should_retry(2)
        assert not policy.should_retry(3)
        assert not policy.should_retry(0)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=10, max_delay=1)

    def test_next_run_at(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        policy = RetryPolicy(base_delay=2.0, jitter=False)
        assert policy.next_run_at(2, now) == now + timedelta(seconds=4)


class TestDeliveryJob:
    def test_naive_timestamps_are_utc(self):
        job = email_job(scheduled_at=datetime(2026, 3, 10, 16, 0))
        assert job.scheduled_at == datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)
        assert not job.is_due(datetime(2026, 3, 10, 15, 59, tzinfo=timezone.utc))

    def test_idempotency_key(self):
        job = email_job()
        assert job.idempotency_key == idempotency_key("req-1", Channel.EMAIL, "u1")
        assert job.idempotency_key == "req-1:email:u1"
        assert job.rendered == CONTENT

    def test_lifecycle(self):
        job = email_job()
        job.start_processing(30)
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        job.requeue("boom", datetime.now(timezone.utc))
        assert job.status == JobStatus.QUEUED
        job.start_processing(30)
        job.complete()
        assert job.status == JobStatus.SUCCEEDED
        assert job.last_error is None

    def test_invalid_transitions(self):
        job = email_job()
        with pytest.raises(JobStateError):
            job.complete()
        job.start_processing(30)
        job.fail("rejected")
        with pytest.raises(JobStateError):
            job.start_processing(30)
        with pytest.raises(JobStateError):
            job.dead_letter("late")

    def test_requeue_refused_when_budget_spent(self):
        job = email_job(max_attempts=1)
        job.start_processing(30)
        with pytest.raises(JobStateError):
            job.requeue("boom", datetime.now(timezone.utc))

    def test_revive_resets_budget(self):
        job = email_job(max_attempts=1)
        job.start_processing(30)
        job.dead_letter("gave up")
        job.revive()
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0


@pytest.mark.asyncio
class TestInMemoryJobStore:
    async def test_dedup_window(self):
        store = InMemoryJobStore()
        first = email_job()
        second = email_job()
        assert await store.add(first, 60) == first.id
        assert await store.add(second, 60) == first.id
        assert len(store.all_jobs()) == 1

    async def test_dedup_window_expiry(self):
        store = InMemoryJobStore()
        first = email_job()
        await store.add(first, 0)
        second = email_job()
        assert await store.add(second, 60) == second.id

    async def test_purge_drops_expired_dedup_entries(self):
        store = InMemoryJobStore()
        await store.add(email_job("req-old"), 0)
        await store.add(email_job("req-live"), 60)

        await store.purge_finished(datetime.now(timezone.utc))

        assert list(store._dedup) == [idempotency_key("req-live", Channel.EMAIL, "u1")]

    async def test_claim_is_exclusive(self):
        store = InMemoryJobStore()
        job = email_job()
        await store.add(job, 60)
        now = datetime.now(timezone.utc)

        assert len(await store.claim_due(now, 10, 30)) == 1
        assert await store.claim_due(now, 10, 30) == []
        assert await store.claim(job.id, now, 30) is None

    async def test_claim_due_skips_future_jobs(self):
        store = InMemoryJobStore()
        now = datetime.now(timezone.utc)
        await store.add(email_job(scheduled_at=now + timedelta(minutes=5)), 60)
        assert await store.claim_due(now, 10, 30) == []

    async def test_returned_jobs_are_copies(self):
        store = InMemoryJobStore()
        job = email_job()
        await store.add(job, 60)
        loaded = await store.get(job.id)
        loaded.contacts.append("other@example.com")
        assert (await store.get(job.id)).contacts == ["u1@example.com"]


@pytest.mark.asyncio
class TestDeliveryQueue:
    async def test_dispatch_success(self, queue, channel_adapters):
        outcome = await queue.dispatch(email_job())

        assert outcome.success
        assert outcome.attempts == 1
        assert outcome.provider_message_id.startswith("mem-")
        channel_adapters[Channel.EMAIL].assert_sent("u1@example.com")

    async def test_dispatch_duplicate_does_not_resend(self, queue, channel_adapters):
        await queue.dispatch(email_job())
        outcome = await queue.dispatch(email_job())

        assert outcome.duplicate
        assert outcome.status == JobStatus.SUCCEEDED
        assert channel_adapters[Channel.EMAIL].calls == 1

    async def test_duplicate_of_failed_job_stays_failed(self, queue, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_with("no such mailbox", retryable=False)
        await queue.dispatch(email_job())
        channel_adapters[Channel.EMAIL].succeed()

        outcome = await queue.dispatch(email_job())

        assert outcome.duplicate
        assert not outcome.success
        assert not outcome.retrying
        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "no such mailbox"
        assert channel_adapters[Channel.EMAIL].calls == 1

    async def test_duplicate_of_pending_retry_reports_retrying(self, queue, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_next("try later")
        await queue.dispatch(email_job())

        outcome = await queue.dispatch(email_job())

        assert outcome.duplicate
        assert outcome.retrying
        assert outcome.error == "try later"

    async def test_terminal_failure_is_not_retried(self, queue, channel_adapters, workers):
        channel_adapters[Channel.EMAIL].fail_with("no such mailbox", retryable=False)

        outcome = await queue.dispatch(email_job())
        await workers.drain()

        assert outcome.status == JobStatus.FAILED
        assert not outcome.retrying
        assert channel_adapters[Channel.EMAIL].calls == 1

    async def test_retryable_failure_is_requeued(self, queue, channel_adapters):
        channel_adapters[Channel.EMAIL].fail_next("try later")

        outcome = await queue.dispatch(email_job())

        assert outcome.status == JobStatus.QUEUED
        assert outcome.retrying
        assert outcome.error == "try later"

    async def test_retry_ceiling(self, queue, channel_adapters, workers):
        channel_adapters[Channel.EMAIL].fail_with("unavailable", retryable=True)

        await queue.dispatch(email_job())
        for _ in range(3):
            await workers.run_once()

        assert channel_adapters[Channel.EMAIL].calls == 3
        (dead,) = await queue.dead_letters()
        assert dead.status == JobStatus.DEAD

    async def test_dead_letter_callback(self, job_store, channel_adapters):
        callback = AsyncMock()
        queue = DeliveryQueue(
            job_store,
            channel_adapters,
            retry_policy=no_delay(max_attempts=1),
            dead_letter=DeadLetterHandler(callback),
        )
        channel_adapters[Channel.EMAIL].fail_with("unavailable", retryable=True)

        outcome = await queue.dispatch(email_job(max_attempts=1))

        assert outcome.status == JobStatus.DEAD
        callback.assert_awaited_once()
        job, reason = callback.await_args.args
        assert job.id == outcome.job_id
        assert reason == "unavailable"

    async def test_dead_letter_callback_errors_are_contained(self, job_store, channel_adapters):
        queue = DeliveryQueue(
            job_store,
            channel_adapters,
            retry_policy=no_delay(max_attempts=1),
            dead_letter=DeadLetterHandler(AsyncMock(side_effect=RuntimeError("pager down"))),
        )
        channel_adapters[Channel.EMAIL].fail_with("unavailable", retryable=True)

        outcome = await queue.dispatch(email_job(max_attempts=1))

        assert outcome.status == JobStatus.DEAD

    async def test_requeue_dead(self, job_store, channel_adapters):
        queue = DeliveryQueue(job_store, channel_adapters, retry_policy=no_delay(max_attempts=1))
        channel_adapters[Channel.EMAIL].fail_with("unavailable", retryable=True)
        outcome = await queue.dispatch(email_job(max_attempts=1))

        channel_adapters[Channel.EMAIL].succeed()
        assert await queue.requeue_dead() == 1
        (job,) = await queue.claim_due(5)
        result = await queue.process(job)

        assert result.success
        assert (await job_store.get(outcome.job_id)).status == JobStatus.SUCCEEDED

    async def test_only_failed_contacts_are_retried(self, queue, channel_adapters, workers):
        adapter = channel_adapters[Channel.EMAIL]
        adapter.fail_next("greylisted", retryable=True)
        job = email_job(contacts=["a@example.com", "b@example.com"])

        await queue.dispatch(job)
        await workers.drain()

        assert len(adapter.sent_messages) == 2
        assert {m.recipient for m in adapter.sent_messages} == {"a@example.com", "b@example.com"}

    async def test_partial_terminal_failure_completes_job(self, queue, channel_adapters):
        adapter = channel_adapters[Channel.EMAIL]
        adapter.fail_for("b@example.com", "unknown user")

        outcome = await queue.dispatch(email_job(contacts=["a@example.com", "b@example.com"]))

        assert outcome.success
        assert [o.success for o in outcome.outcomes] == [True, False]

    async def test_missing_adapter_fails_job(self, job_store):
        queue = DeliveryQueue(job_store, {})
        outcome = await queue.dispatch(email_job())
        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "no adapter"

    async def test_expired_job_is_not_sent(self, queue, channel_adapters):
        past = datetime.now(timezone.utc) - timedelta(seconds=1)
        outcome = await queue.dispatch(email_job(expires_at=past))
        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "expired"
        assert channel_adapters[Channel.EMAIL].calls == 0

    async def test_handlers_for_other_job_kinds(self, queue):
        handler = AsyncMock()
        queue.register_handler(JobKind.DIGEST, handler)
        job = DeliveryJob(kind=JobKind.DIGEST, payload={"recipient_id": "u1"})

        outcome = await queue.dispatch(job)

        assert outcome.success
        handler.assert_awaited_once()

    async def test_handler_failure_retries(self, queue):
        queue.register_handler(JobKind.DIGEST, AsyncMock(side_effect=RuntimeError("audit down")))
        outcome = await queue.dispatch(DeliveryJob(kind=JobKind.DIGEST))
        assert outcome.status == JobStatus.QUEUED
        assert outcome.error == "audit down"

    async def test_cannot_register_delivery_handler(self, queue):
        with pytest.raises(ValueError):
            queue.register_handler(JobKind.DELIVERY, AsyncMock())

    async def test_reclaim_expired_lease(self, job_store, channel_adapters):
        queue = DeliveryQueue(
            job_store, channel_adapters, config=QueueConfig(lease_seconds=0)
        )
        job = email_job()
        await queue.enqueue(job)
        (claimed,) = await queue.claim_due(1)
        # The worker died here; the zero lease is already expired.

        (reclaimed,) = await queue.reclaim_expired()

        assert reclaimed.id == claimed.id
        assert reclaimed.status == JobStatus.QUEUED
        assert reclaimed.attempts == 1

    async def test_reclaim_on_final_attempt_dead_letters(self, job_store, channel_adapters):
        queue = DeliveryQueue(
            job_store,
            channel_adapters,
            retry_policy=no_delay(max_attempts=1),
            config=QueueConfig(lease_seconds=0),
        )
        await queue.enqueue(email_job(max_attempts=1))
        await queue.claim_due(1)

        (reclaimed,) = await queue.reclaim_expired()

        assert reclaimed.status == JobStatus.DEAD
        assert reclaimed.last_error == "lease expired on final attempt"

    async def test_depth_and_metrics(self, job_store, channel_adapters):
        metrics = MagicMock()
        queue = DeliveryQueue(job_store, channel_adapters, metrics=metrics)
        await queue.enqueue(email_job("r1"))
        await queue.enqueue(email_job("r2"))
        await queue.enqueue(DeliveryJob(kind=JobKind.DIGEST))

        assert await queue.depth() == {"email": 2, "digest": 1}
        metrics.set_queue_depth.assert_called_once_with({"email": 2, "digest": 1})

    async def test_delivery_outcomes_are_counted(self, job_store, channel_adapters):
        metrics = MagicMock()
        queue = DeliveryQueue(job_store, channel_adapters, metrics=metrics)

        await queue.dispatch(email_job())

        metrics.record_delivery.assert_called_once_with("email", True, retryable=False)

    async def test_purge_completed(self, queue, job_store):
        await queue.dispatch(email_job())
        assert await queue.purge_completed(timedelta(days=1)) == 0
        assert await queue.purge_completed(timedelta(seconds=-1)) == 1
        assert job_store.all_jobs() == []


@pytest.mark.asyncio
class TestDeliveryWorkerPool:
    async def test_run_once_processes_due_jobs(self, queue, workers, channel_adapters):
        for n in range(3):
            await queue.enqueue(email_job(f"r{n}"))

        outcomes = await workers.run_once()

        assert len(outcomes) == 3
        assert all(o.success for o in outcomes)
        assert channel_adapters[Channel.EMAIL].calls == 3

    async def test_pool_size_caps_batch(self, queue, channel_adapters):
        pool = DeliveryWorkerPool(queue, size=2)
        for n in range(5):
            await queue.enqueue(email_job(f"r{n}"))

        assert len(await pool.run_once()) == 2
        assert await pool.drain() == 3

    async def test_start_and_stop(self, queue, channel_adapters):
        health = HealthRegistry()
        pool = DeliveryWorkerPool(
            queue, size=2, poll_interval=0.01, sweep_interval=0.01, health=health
        )
        await pool.start()
        assert pool.running
        await queue.enqueue(email_job())
        pool.trigger()

        for _ in range(100):
            if channel_adapters[Channel.EMAIL].calls:
                break
            await asyncio.sleep(0.01)

        await pool.stop()
        assert not pool.running
        assert channel_adapters[Channel.EMAIL].calls == 1
        assert (await health.check_all()) == {}


def test_worker_pool_rejects_empty_pool(queue):
    with pytest.raises(ValueError):
        DeliveryWorkerPool(queue, size=0)
