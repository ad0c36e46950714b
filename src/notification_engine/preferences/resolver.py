"""PreferenceResolver: lazily materialized preferences and per-channel send decisions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..delivery import Channel, Priority
from .model import DigestPeriod, Preferences

if TYPE_CHECKING:
    from ..ports.stores import IPreferenceStore

logger = logging.getLogger(__name__)

# Channels held back (not dropped) while the recipient is in quiet hours.
DEFAULT_DEFERRABLE: frozenset[Channel] = frozenset({Channel.SMS, Channel.PUSH})


class Decision(str, Enum):
    SEND = "send"
    DEFER = "defer"
    SKIP = "skip"


@dataclass(frozen=True)
class ChannelDecision:
    """What the orchestrator should do with one channel for one recipient."""

    channel: Channel
    decision: Decision
    reason: str | None = None
    defer_until: datetime | None = None

    @property
    def dispatch(self) -> bool:
        """True when the channel is dispatched (now or deferred)."""
        return self.decision != Decision.SKIP


class PreferenceResolver:
    """
    Resolves recipient preferences and decides whether a channel fires.

    Defaults are written on first read through ``upsert_default`` so that
    concurrent first lookups converge on one record. Store failures fail open
    (``fail_open=True``) and are logged as degraded-mode events.
    """

    def __init__(
        self,
        store: IPreferenceStore,
        *,
        default_language: str = "en",
        fail_open: bool = True,
        deferrable: frozenset[Channel] = DEFAULT_DEFERRABLE,
    ) -> None:
        self._store = store
        self._default_language = default_language
        self._fail_open = fail_open
        self._deferrable = deferrable

    async def resolve(self, recipient_id: str) -> Preferences:
        """Return stored preferences, creating and persisting defaults if absent.

        Raises whatever the store raises; callers that must fail open use
        :meth:`resolve_or_default`.
        """
        existing = await self._store.get(recipient_id)
        if existing is not None:
            return existing
        defaults = Preferences.defaults(recipient_id, self._default_language)
        stored = await self._store.upsert_default(defaults)
        logger.info("Materialized default preferences for %s", recipient_id)
        return stored

    async def resolve_or_default(self, recipient_id: str) -> tuple[Preferences, bool]:
        """Resolve preferences; on store failure return transient defaults.

        Returns ``(preferences, degraded)``.
        """
        try:
            return await self.resolve(recipient_id), False
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Preference store unavailable for %s, degraded mode (fail_open=%s): %s",
                recipient_id,
                self._fail_open,
                e,
            )
            return Preferences.defaults(recipient_id, self._default_language), True

    async def should_notify(self, recipient_id: str, channel: Channel, category: str) -> bool:
        """Return True when ``channel`` may fire now for ``category``.

        Checks the channel opt-in, then the category, then quiet hours for
        deferrable channels.
        """
        try:
            prefs = await self.resolve(recipient_id)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "should_notify degraded for %s/%s (fail_open=%s): %s",
                recipient_id,
                channel.value,
                self._fail_open,
                e,
            )
            return self._fail_open
        decision = self.decide(prefs, channel, category, Priority.NORMAL)
        return decision.decision == Decision.SEND

    def decide(
        self,
        prefs: Preferences,
        channel: Channel,
        category: str,
        priority: Priority,
        now: datetime | None = None,
        *,
        degraded: bool = False,
    ) -> ChannelDecision:
        """Pure decision for one channel given already-resolved preferences."""
        if degraded:
            if self._fail_open:
                return ChannelDecision(channel, Decision.SEND, reason="degraded")
            return ChannelDecision(channel, Decision.SKIP, reason="degraded")
        if not prefs.channel_enabled(channel):
            return ChannelDecision(channel, Decision.SKIP, reason="channel_disabled")
        if not prefs.allows(channel, category):
            return ChannelDecision(channel, Decision.SKIP, reason="category_disabled")
        if (
            priority != Priority.HIGH
            and channel in self._deferrable
            and prefs.quiet_hours.is_active(now)
        ):
            return ChannelDecision(
                channel,
                Decision.DEFER,
                reason="quiet_hours",
                defer_until=prefs.quiet_hours.window_end(now),
            )
        return ChannelDecision(channel, Decision.SEND)

    async def evaluate(
        self,
        recipient_id: str,
        channels: list[Channel] | tuple[Channel, ...],
        category: str,
        priority: Priority = Priority.NORMAL,
        now: datetime | None = None,
    ) -> tuple[Preferences, list[ChannelDecision]]:
        """Resolve once and decide every requested channel."""
        prefs, degraded = await self.resolve_or_default(recipient_id)
        current = now or datetime.now(timezone.utc)
        return prefs, [
            self.decide(prefs, c, category, priority, current, degraded=degraded)
            for c in channels
        ]

    # -- owner/admin operations -------------------------------------------

    async def update(self, recipient_id: str, changes: dict[str, Any]) -> Preferences:
        """Apply ``changes`` (top-level fields) and persist a new version."""
        current = await self.resolve(recipient_id)
        forbidden = {"recipient_id", "version", "updated_at", "unsubscribe_token"} & set(changes)
        if forbidden:
            raise ValueError(f"Fields cannot be changed: {', '.join(sorted(forbidden))}")
        payload = {**current.model_dump(), **changes}
        payload["version"] = current.version + 1
        payload["updated_at"] = datetime.now(timezone.utc)
        updated = Preferences.model_validate(payload)
        await self._store.put(updated)
        return updated

    async def set_channel(self, recipient_id: str, channel: Channel, enabled: bool) -> Preferences:
        current = await self.resolve(recipient_id)
        pref = current.for_channel(channel).model_copy(update={"enabled": enabled})
        updated = current.with_changes(channels={**current.channels, channel: pref})
        await self._store.put(updated)
        return updated

    async def reset(self, recipient_id: str) -> Preferences:
        """Reset to defaults, keeping the unsubscribe token and bumping the version."""
        current = await self.resolve(recipient_id)
        fresh = Preferences.defaults(recipient_id, self._default_language).model_copy(
            update={
                "unsubscribe_token": current.unsubscribe_token,
                "version": current.version + 1,
            }
        )
        await self._store.put(fresh)
        return fresh

    async def unsubscribe(
        self, token: str, categories: list[str] | None = None
    ) -> Preferences | None:
        """Unsubscribe by token: from the given categories, or from all but security."""
        prefs = await self._store.find_by_unsubscribe_token(token)
        if prefs is None:
            return None
        targets = categories or [
            c for c in prefs.for_channel(Channel.EMAIL).categories if c != "security"
        ]
        updated = prefs
        for category in targets:
            updated = updated.with_category(category, False)
        await self._store.put(updated)
        logger.info("Recipient %s unsubscribed from %s", prefs.recipient_id, targets)
        return updated

    async def recipients_for_digest(self, period: DigestPeriod) -> list[str]:
        return [p.recipient_id for p in await self._store.list_by_digest(period)]
