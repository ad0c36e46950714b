"""Preferences value objects: channel opt-ins, categories, quiet hours, digest."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field

from ..delivery import Channel

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"
DEFAULT_TIMEZONE = "America/Toronto"

# Categories known to the platform and whether they start enabled.
DEFAULT_CATEGORIES: dict[str, bool] = {
    "general": True,
    "rfq_new": True,
    "rfq_reminder": True,
    "bid_status": True,
    "payment": True,
    "document": True,
    "certification": True,
    "marketing": False,
    "security": True,
}

# SMS is opt-in; every other channel is on by default.
DEFAULT_CHANNEL_ENABLED: dict[Channel, bool] = {
    Channel.EMAIL: True,
    Channel.SMS: False,
    Channel.PUSH: True,
    Channel.IN_APP: True,
}


class DigestPeriod(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return timezone.utc


class QuietHours(BaseModel):
    """Local time-of-day window during which deferrable channels hold back.

    The window is half-open ``[start, end)``. When ``start > end`` the window
    spans midnight; ``start == end`` is an empty window.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    start: time = time(22, 0)
    end: time = time(8, 0)
    timezone: str = DEFAULT_TIMEZONE

    def local_now(self, now: datetime | None = None) -> datetime:
        current = now or _utcnow()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(_zone(self.timezone))

    def contains(self, now: datetime | None = None) -> bool:
        """Return True when ``now`` falls inside the window (ignores ``enabled``)."""
        cur = self.local_now(now).time().replace(tzinfo=None)
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= cur < self.end
        return cur >= self.start or cur < self.end

    def is_active(self, now: datetime | None = None) -> bool:
        return self.enabled and self.contains(now)

    def window_end(self, now: datetime | None = None) -> datetime:
        """Return the UTC instant at which the current (or next) window closes."""
        local = self.local_now(now)
        zone = local.tzinfo
        candidate = datetime.combine(local.date(), self.end).replace(tzinfo=zone)
        if candidate <= local:
            candidate = datetime.combine(
                local.date() + timedelta(days=1), self.end
            ).replace(tzinfo=zone)
        return candidate.astimezone(timezone.utc)


class ChannelPreference(BaseModel):
    """Per-channel opt-in flag and per-category overrides."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    categories: dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_CATEGORIES))

    def allows(self, category: str) -> bool:
        # Unknown categories are allowed unless explicitly disabled.
        return self.enabled and self.categories.get(category, True)


class Preferences(BaseModel):
    """A recipient's notification preferences. Never deleted, only reset."""

    model_config = ConfigDict(frozen=True)

    recipient_id: str
    channels: dict[Channel, ChannelPreference] = Field(default_factory=dict)
    language: str = DEFAULT_LANGUAGE
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    digest: DigestPeriod = DigestPeriod.NONE
    unsubscribe_token: str = Field(default_factory=lambda: secrets.token_urlsafe(24))
    version: int = 1
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def defaults(cls, recipient_id: str, language: str = DEFAULT_LANGUAGE) -> Preferences:
        """Build the default preference record for a first-time recipient."""
        return cls(
            recipient_id=recipient_id,
            channels={
                channel: ChannelPreference(enabled=enabled)
                for channel, enabled in DEFAULT_CHANNEL_ENABLED.items()
            },
            language=language,
        )

    def for_channel(self, channel: Channel) -> ChannelPreference:
        pref = self.channels.get(channel)
        if pref is None:
            return ChannelPreference(enabled=DEFAULT_CHANNEL_ENABLED.get(channel, True))
        return pref

    def channel_enabled(self, channel: Channel) -> bool:
        return self.for_channel(channel).enabled

    def allows(self, channel: Channel, category: str) -> bool:
        return self.for_channel(channel).allows(category)

    def with_changes(self, **changes: Any) -> Preferences:
        """Return a new version with ``changes`` applied."""
        return self.model_copy(
            update={**changes, "version": self.version + 1, "updated_at": _utcnow()}
        )

    def with_category(self, category: str, enabled: bool) -> Preferences:
        """Return a new version with ``category`` toggled on every channel."""
        channels = {
            channel: pref.model_copy(
                update={"categories": {**pref.categories, category: enabled}}
            )
            for channel, pref in self.channels.items()
        }
        return self.with_changes(channels=channels)
