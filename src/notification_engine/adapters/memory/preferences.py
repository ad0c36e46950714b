"""InMemoryPreferenceStore: in-memory implementation for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...ports.stores import IPreferenceStore

if TYPE_CHECKING:
    from ...preferences.model import DigestPeriod, Preferences


class InMemoryPreferenceStore(IPreferenceStore):
    """Dict-backed preference store. ``upsert_default`` is insert-if-absent."""

    def __init__(self) -> None:
        self._records: dict[str, Preferences] = {}
        self.upserts = 0

    async def get(self, recipient_id: str) -> Preferences | None:
        return self._records.get(recipient_id)

    async def put(self, preferences: Preferences) -> None:
        self._records[preferences.recipient_id] = preferences

    async def upsert_default(self, preferences: Preferences) -> Preferences:
        self.upserts += 1
        return self._records.setdefault(preferences.recipient_id, preferences)

    async def find_by_unsubscribe_token(self, token: str) -> Preferences | None:
        for prefs in self._records.values():
            if prefs.unsubscribe_token == token:
                return prefs
        return None

    async def list_by_digest(self, period: DigestPeriod) -> list[Preferences]:
        return [p for p in self._records.values() if p.digest == period]

    def __len__(self) -> int:
        return len(self._records)
