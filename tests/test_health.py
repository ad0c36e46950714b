from __future__ import annotations

import datetime
from unittest.mock import AsyncMock

import pytest

from notification_engine.delivery import Channel, RenderedContent
from notification_engine.health import (
    DeadLetterCheck,
    HealthRegistry,
    QueueBacklogCheck,
    RedisHealthCheck,
)
from notification_engine.queue import DeliveryJob


def email_job(request_id: str) -> DeliveryJob:
    return DeliveryJob.for_delivery(
        request_id=request_id,
        channel=Channel.EMAIL,
        recipient_id="u1",
        contacts=["u1@example.com"],
        content=RenderedContent(channel=Channel.EMAIL, body_text="hi", subject="Hi"),
    )


@pytest.mark.asyncio
class TestHealthRegistry:
    async def test_sync_and_async_checks(self):
        registry = HealthRegistry()
        registry.register("sync", lambda: True)
        registry.register("async", AsyncMock(return_value=False))

        assert await registry.check_all() == {"sync": "up", "async": "down"}

    async def test_raising_check_is_down_and_logged(self, caplog):
        registry = HealthRegistry()

        def broken() -> bool:
            raise RuntimeError("boom")

        registry.register("smtp", broken)

        assert await registry.check_all() == {"smtp": "down"}
        assert "Health check smtp failed: boom" in caplog.text

    async def test_silent_worker_is_down(self):
        registry = HealthRegistry(heartbeat_timeout_seconds=30)
        registry.heartbeat("delivery-worker-0")
        registry.heartbeat("delivery-worker-1")
        registry._heartbeats["delivery-worker-1"] -= datetime.timedelta(seconds=31)

        assert await registry.check_all() == {
            "delivery-worker-0": "up",
            "delivery-worker-1": "down",
        }

        registry.forget("delivery-worker-1")
        assert await registry.check_all() == {"delivery-worker-0": "up"}

    async def test_status_report(self):
        registry = HealthRegistry()
        registry.register("redis", lambda: True)
        registry.heartbeat("delivery-worker-0")

        report = await registry.status()

        assert report["status"] == "healthy"
        assert report["components"] == {"redis": "up", "delivery-worker-0": "up"}
        assert set(report["workers"]) == {"delivery-worker-0"}

        registry.register("dead_letters", lambda: False)
        assert (await registry.status())["status"] == "unhealthy"


@pytest.mark.asyncio
class TestRedisHealthCheck:
    async def test_ping(self):
        client = AsyncMock()
        client.ping.return_value = True
        assert await RedisHealthCheck(client)() is True

    async def test_connection_failure_reports_down(self):
        client = AsyncMock()
        client.ping.side_effect = ConnectionError("refused")
        registry = HealthRegistry()
        registry.register("redis", RedisHealthCheck(client))

        assert await registry.check_all() == {"redis": "down"}


@pytest.mark.asyncio
class TestQueueChecks:
    async def test_backlog_within_limit(self, queue):
        await queue.enqueue(email_job("req-1"))
        assert await QueueBacklogCheck(queue, max_pending=1)() is True

    async def test_backlog_over_limit(self, queue, caplog):
        await queue.enqueue(email_job("req-1"))
        await queue.enqueue(email_job("req-2"))

        assert await QueueBacklogCheck(queue, max_pending=1)() is False
        assert "Delivery backlog 2 exceeds 1" in caplog.text

    async def test_dead_letters(self, queue, channel_adapters, workers):
        check = DeadLetterCheck(queue, max_dead=1)
        assert await check() is True

        channel_adapters[Channel.EMAIL].fail_with("unavailable", retryable=True)
        await queue.dispatch(email_job("req-1"))
        await workers.drain()

        assert len(await queue.dead_letters()) == 1
        assert await check() is False

    async def test_dead_letter_threshold_must_be_positive(self, queue):
        with pytest.raises(ValueError):
            DeadLetterCheck(queue, max_dead=0)
