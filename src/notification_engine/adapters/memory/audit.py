"""InMemoryAuditStore: append-only audit log for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...ports.stores import IAuditStore

if TYPE_CHECKING:
    from datetime import datetime

    from ...models import AuditRecord


class InMemoryAuditStore(IAuditStore):
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self.records.append(record)

    async def query(
        self,
        recipient_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AuditRecord]:
        return [
            r
            for r in self.records
            if recipient_id in r.recipient_ids
            and (since is None or r.created_at >= since)
            and (until is None or r.created_at < until)
        ]

    def for_request(self, request_id: str) -> list[AuditRecord]:
        return [r for r in self.records if r.request_id == request_id]
