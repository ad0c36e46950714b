"""Engine settings loaded from the environment (``NOTIFY_`` prefix)."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .delivery import Channel
from .queue.queue import QueueConfig
from .queue.retry import RetryPolicy
from .ratelimit.limiter import DEFAULT_POLICIES, RateLimitPolicy
from .realtime.fanout import RealtimeConfig


class QueueSettings(BaseModel):
    workers: int = 4
    poll_interval: float = 1.0
    sweep_interval: float = 15.0
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 300.0
    jitter: bool = True
    lease_seconds: float = 30.0
    dedup_ttl_seconds: int = 24 * 3600
    retention_seconds: int = 7 * 24 * 3600
    max_backlog: int = 10_000
    max_dead_letters: int = 100

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )

    def queue_config(self) -> QueueConfig:
        return QueueConfig(
            lease_seconds=self.lease_seconds,
            dedup_ttl_seconds=self.dedup_ttl_seconds,
            retention_seconds=self.retention_seconds,
        )


class RateLimitSettings(BaseModel):
    """Per-minute ceilings per channel; zero disables throttling for the channel."""

    email: int = DEFAULT_POLICIES[Channel.EMAIL].limit
    sms: int = DEFAULT_POLICIES[Channel.SMS].limit
    push: int = DEFAULT_POLICIES[Channel.PUSH].limit
    in_app: int = 0
    window_seconds: int = 60

    def policies(self) -> dict[Channel, RateLimitPolicy]:
        limits = {
            Channel.EMAIL: self.email,
            Channel.SMS: self.sms,
            Channel.PUSH: self.push,
            Channel.IN_APP: self.in_app,
        }
        return {
            channel: RateLimitPolicy(limit=limit, window_seconds=self.window_seconds)
            for channel, limit in limits.items()
            if limit > 0
        }


class RealtimeSettings(BaseModel):
    jwt_secret: str = ""
    pending_cap: int = 100
    pending_ttl_seconds: int = 7 * 24 * 3600
    registry_ttl_seconds: int = 300

    def config(self) -> RealtimeConfig:
        return RealtimeConfig(
            pending_cap=self.pending_cap,
            pending_ttl_seconds=self.pending_ttl_seconds,
            registry_ttl_seconds=self.registry_ttl_seconds,
        )


class SmtpSettings(BaseModel):
    host: str | None = None
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    from_email: str | None = None


class TwilioSettings(BaseModel):
    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None


class FcmSettings(BaseModel):
    project_id: str | None = None
    access_token: str | None = None


class NotificationSettings(BaseSettings):
    """
    Top-level engine settings.

    Nested sections read from ``NOTIFY_<SECTION>__<FIELD>``, e.g.
    ``NOTIFY_QUEUE__MAX_ATTEMPTS=5`` or ``NOTIFY_SMTP__HOST=mail.example.com``.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    redis_url: str | None = None
    default_language: str = "en"
    strict_templates: bool = False
    template_revalidate_seconds: float | None = 30.0
    fail_open: bool = True
    group_batch_size: int = 10
    group_success_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    digest_hour: int = Field(default=9, ge=0, le=23)
    digest_timezone: str = "America/Toronto"
    channel_timeout_seconds: float = 10.0

    queue: QueueSettings = Field(default_factory=QueueSettings)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    fcm: FcmSettings = Field(default_factory=FcmSettings)
