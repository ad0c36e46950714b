"""Storage ports: preferences, templates, audit log, recipient directory, inbox."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from ..delivery import Channel
    from ..inbox import InAppNotification
    from ..models import AuditRecord
    from ..preferences.model import DigestPeriod, Preferences
    from ..templates.model import Template


@runtime_checkable
class IPreferenceStore(Protocol):
    """Key/value store of recipient preferences, keyed by recipient id."""

    async def get(self, recipient_id: str) -> Preferences | None:
        """Return stored preferences or None."""
        ...

    async def put(self, preferences: Preferences) -> None:
        """Store (replace) preferences."""
        ...

    async def upsert_default(self, preferences: Preferences) -> Preferences:
        """Insert ``preferences`` only if no record exists; return the stored record.

        Concurrent callers for the same recipient must all receive the same record.
        """
        ...

    async def find_by_unsubscribe_token(self, token: str) -> Preferences | None:
        """Look up the owner of an unsubscribe token."""
        ...

    async def list_by_digest(self, period: DigestPeriod) -> list[Preferences]:
        """Return every record whose digest preference equals ``period``."""
        ...


@runtime_checkable
class ITemplateStore(Protocol):
    """Versioned template store keyed by (name, language)."""

    async def get(self, name: str, language: str) -> Template | None:
        """Return the active version or None."""
        ...

    async def put(self, template: Template) -> Template:
        """Store a new active version and return it (with its version number)."""
        ...


@runtime_checkable
class IAuditStore(Protocol):
    """Append-only log of notification results."""

    async def append(self, record: AuditRecord) -> None:
        """Append a record. Records are never edited in place."""
        ...

    async def query(
        self,
        recipient_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AuditRecord]:
        """Return records for a recipient in the time range, oldest first."""
        ...


@runtime_checkable
class IRecipientDirectory(Protocol):
    """Resolves contact addresses and group membership."""

    async def get_contacts(self, recipient_id: str, channel: Channel) -> list[str]:
        """Return contact addresses for the channel (several push tokens possible)."""
        ...

    async def get_group_members(self, group_id: str) -> list[str]:
        """Return active member recipient ids of a group."""
        ...


@runtime_checkable
class IInAppStore(Protocol):
    """Per-recipient in-app inbox."""

    async def add(self, notification: InAppNotification) -> None:
        ...

    async def mark_read(self, recipient_id: str, notification_id: str) -> bool:
        """Mark one notification read; return False when unknown or already read."""
        ...

    async def mark_all_read(self, recipient_id: str) -> int:
        """Mark everything read; return how many changed."""
        ...

    async def unread_count(self, recipient_id: str) -> int:
        ...

    async def list_for(
        self, recipient_id: str, limit: int = 20, offset: int = 0
    ) -> list[InAppNotification]:
        """Newest first."""
        ...
