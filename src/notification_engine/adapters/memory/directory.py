"""InMemoryRecipientDirectory: contacts and group membership for testing."""

from __future__ import annotations

from ...delivery import Channel
from ...ports.stores import IRecipientDirectory


class InMemoryRecipientDirectory(IRecipientDirectory):
    """
    Recipient contact book.

    In-app delivery addresses the recipient id itself, so recipients get an
    in-app contact implicitly.
    """

    def __init__(self) -> None:
        self._contacts: dict[tuple[str, Channel], list[str]] = {}
        self._groups: dict[str, list[str]] = {}

    def add_recipient(
        self,
        recipient_id: str,
        *,
        email: str | None = None,
        phone: str | None = None,
        push_tokens: list[str] | None = None,
    ) -> None:
        if email:
            self._contacts[(recipient_id, Channel.EMAIL)] = [email]
        if phone:
            self._contacts[(recipient_id, Channel.SMS)] = [phone]
        if push_tokens:
            self._contacts[(recipient_id, Channel.PUSH)] = list(push_tokens)

    def add_group(self, group_id: str, members: list[str]) -> None:
        self._groups[group_id] = list(members)

    async def get_contacts(self, recipient_id: str, channel: Channel) -> list[str]:
        if channel == Channel.IN_APP:
            return [recipient_id]
        return list(self._contacts.get((recipient_id, channel), []))

    async def get_group_members(self, group_id: str) -> list[str]:
        return list(self._groups.get(group_id, []))
