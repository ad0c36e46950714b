"""NotificationEngine: composition root wiring every component from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .adapters.memory import (
    InMemoryAuditStore,
    InMemoryConnectionStore,
    InMemoryCounterStore,
    InMemoryInAppStore,
    InMemoryJobStore,
    InMemoryPendingStore,
    InMemoryPreferenceStore,
    InMemoryRealtimeBus,
    InMemoryRecipientDirectory,
    InMemorySocketTransport,
    InMemoryTemplateStore,
)
from .adapters.redis import (
    CachedPreferenceStore,
    RedisAuditStore,
    RedisConnectionStore,
    RedisCounterStore,
    RedisInAppStore,
    RedisJobStore,
    RedisPendingStore,
    RedisPreferenceStore,
    RedisRealtimeBus,
)
from .channels import FcmPushAdapter, InAppAdapter, SmtpEmailAdapter, TwilioSmsAdapter
from .config import NotificationSettings
from .delivery import Channel
from .health import DeadLetterCheck, HealthRegistry, QueueBacklogCheck, RedisHealthCheck
from .observability import install_hooks
from .orchestrator import DigestScheduler, NotificationOrchestrator, OrchestratorConfig
from .preferences.resolver import PreferenceResolver
from .queue import DeadLetterHandler, DeliveryQueue, DeliveryWorkerPool
from .ratelimit.limiter import FixedWindowRateLimiter
from .realtime import JwtAuthenticator, RealtimeFanout
from .templates.engine import TemplateEngine

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from redis.asyncio import Redis

    from .observability.metrics import NotificationMetrics
    from .ports.channel import IChannelAdapter
    from .ports.queue import ICounterStore, IJobStore
    from .ports.realtime import (
        IConnectionStore,
        IPendingStore,
        IRealtimeBus,
        ISocketTransport,
        ITokenAuthenticator,
    )
    from .ports.stores import (
        IAuditStore,
        IInAppStore,
        IPreferenceStore,
        IRecipientDirectory,
        ITemplateStore,
    )
    from .queue.job import DeliveryJob

logger = logging.getLogger("notification_engine")


class NotificationEngine:
    """
    Builds and owns the orchestrator, queue, worker pool, realtime fan-out and
    digest scheduler.

    With ``redis`` the job store, rate-limit counters, connection registry,
    pending lists, bus, in-app inbox, preference records and audit log live
    in Redis and are shared by every process; a ``preference_store`` passed
    alongside ``redis`` gets a Redis read-through cache instead. Without
    ``redis`` in-memory backends are used.
    Channel adapters are built from settings for every configured provider;
    ``adapters`` overrides or adds to them.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        *,
        redis: Redis | None = None,  # type: ignore[type-arg]
        adapters: Mapping[Channel, IChannelAdapter] | None = None,
        preference_store: IPreferenceStore | None = None,
        template_store: ITemplateStore | None = None,
        audit_store: IAuditStore | None = None,
        directory: IRecipientDirectory | None = None,
        inbox: IInAppStore | None = None,
        transport: ISocketTransport | None = None,
        authenticator: ITokenAuthenticator | None = None,
        metrics: NotificationMetrics | None = None,
        process_id: str | None = None,
        on_dead_letter: Callable[[DeliveryJob, str], Awaitable[None]] | None = None,
    ) -> None:
        self.settings = settings or NotificationSettings()
        self.metrics = metrics
        self.health = HealthRegistry()
        self._redis = redis

        jobs, counters, connections, pending, bus = self._backends(redis)
        preferences: IPreferenceStore
        if redis is None:
            preferences = preference_store or InMemoryPreferenceStore()
        elif preference_store is None:
            preferences = RedisPreferenceStore(redis)
        else:
            preferences = CachedPreferenceStore(preference_store, redis)
        if redis is not None:
            self.health.register("redis", RedisHealthCheck(redis))

        self.directory = directory or InMemoryRecipientDirectory()
        if audit_store is None:
            audit_store = RedisAuditStore(redis) if redis is not None else InMemoryAuditStore()
        self.audit = audit_store
        if inbox is None:
            inbox = RedisInAppStore(redis) if redis is not None else InMemoryInAppStore()
        self.inbox = inbox
        self.rate_limiter = FixedWindowRateLimiter(
            counters,
            self.settings.rate_limits.policies(),
            fail_open=self.settings.fail_open,
        )
        self.preferences = PreferenceResolver(
            preferences,
            default_language=self.settings.default_language,
            fail_open=self.settings.fail_open,
        )
        self.templates = TemplateEngine(
            template_store or InMemoryTemplateStore(),
            default_language=self.settings.default_language,
            strict=self.settings.strict_templates,
            revalidate_seconds=self.settings.template_revalidate_seconds,
        )

        self.realtime: RealtimeFanout | None = None
        secret = self.settings.realtime.jwt_secret
        if authenticator is not None or secret:
            self.realtime = RealtimeFanout(
                transport or InMemorySocketTransport(),
                authenticator or JwtAuthenticator(secret),
                connections,
                pending,
                bus,
                config=self.settings.realtime.config(),
                process_id=process_id,
                inbox=self.inbox,
                metrics=metrics,
            )

        self.adapters: dict[Channel, IChannelAdapter] = self._default_adapters()
        self.adapters.update(adapters or {})

        queue_settings = self.settings.queue
        self.queue = DeliveryQueue(
            jobs,
            self.adapters,
            retry_policy=queue_settings.retry_policy(),
            dead_letter=DeadLetterHandler(on_dead_letter),
            config=queue_settings.queue_config(),
            metrics=metrics,
        )
        self.workers = DeliveryWorkerPool(
            self.queue,
            size=queue_settings.workers,
            poll_interval=queue_settings.poll_interval,
            sweep_interval=queue_settings.sweep_interval,
            health=self.health,
        )
        self.health.register("queue", QueueBacklogCheck(self.queue, queue_settings.max_backlog))
        self.health.register(
            "dead_letters", DeadLetterCheck(self.queue, queue_settings.max_dead_letters)
        )
        self.orchestrator = NotificationOrchestrator(
            self.preferences,
            self.templates,
            self.queue,
            self.directory,
            self.audit,
            config=OrchestratorConfig(
                group_batch_size=self.settings.group_batch_size,
                group_success_threshold=self.settings.group_success_threshold,
            ),
        )
        self.digests = DigestScheduler(
            self.orchestrator.digests,
            hour=self.settings.digest_hour,
            tz=self.settings.digest_timezone,
        )
        self._started = False

    def _backends(
        self, redis: Redis | None  # type: ignore[type-arg]
    ) -> tuple[IJobStore, ICounterStore, IConnectionStore, IPendingStore, IRealtimeBus]:
        if redis is None:
            return (
                InMemoryJobStore(),
                InMemoryCounterStore(),
                InMemoryConnectionStore(),
                InMemoryPendingStore(),
                InMemoryRealtimeBus(),
            )
        return (
            RedisJobStore(redis),
            RedisCounterStore(redis),
            RedisConnectionStore(redis),
            RedisPendingStore(redis),
            RedisRealtimeBus(redis),
        )

    def _default_adapters(self) -> dict[Channel, IChannelAdapter]:
        s = self.settings
        timeout = s.channel_timeout_seconds
        adapters: dict[Channel, IChannelAdapter] = {
            Channel.IN_APP: InAppAdapter(self.inbox, self.realtime, rate_limiter=self.rate_limiter),
        }
        if s.smtp.host:
            adapters[Channel.EMAIL] = SmtpEmailAdapter(
                s.smtp.host,
                s.smtp.port,
                s.smtp.username,
                s.smtp.password,
                s.smtp.use_tls,
                timeout,
                s.smtp.from_email,
                rate_limiter=self.rate_limiter,
            )
        if s.twilio.account_sid and s.twilio.auth_token and s.twilio.from_number:
            adapters[Channel.SMS] = TwilioSmsAdapter(
                s.twilio.account_sid,
                s.twilio.auth_token,
                s.twilio.from_number,
                timeout,
                rate_limiter=self.rate_limiter,
            )
        if s.fcm.project_id and s.fcm.access_token:
            adapters[Channel.PUSH] = FcmPushAdapter(
                s.fcm.project_id,
                s.fcm.access_token,
                timeout,
                rate_limiter=self.rate_limiter,
            )
        return adapters

    # -- lifecycle --------------------------------------------------------

    async def start(
        self, *, workers: bool = True, digests: bool = True, hooks: bool = True
    ) -> None:
        if self._started:
            return
        if hooks:
            install_hooks(metrics=self.metrics)
        if self.realtime is not None:
            await self.realtime.start()
        if workers:
            await self.workers.start()
        if digests:
            await self.digests.start()
        self._started = True
        logger.info(
            "NotificationEngine started (channels: %s, backend: %s)",
            ", ".join(sorted(c.value for c in self.adapters)),
            "redis" if self._redis is not None else "memory",
        )

    async def stop(self) -> None:
        if not self._started:
            return
        await self.digests.stop()
        await self.workers.stop()
        if self.realtime is not None:
            await self.realtime.stop()
        self._started = False
        logger.info("NotificationEngine stopped")

    async def __aenter__(self) -> NotificationEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def health_status(self) -> dict[str, Any]:
        """Health report plus queue depth and active realtime connections."""
        report = await self.health.status()
        report["queue_depth"] = await self.queue.depth()
        report["active_connections"] = (
            self.realtime.active_connections if self.realtime is not None else 0
        )
        return report
