"""In-memory implementation of the event journal."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from ..contracts import EventRecord
from .base import EventJournal, stamp_after


class InMemoryJournal(EventJournal):
    """Keep journal records in local memory.

    Useful for tests or dry runs. Nothing is written to disk.
    """

    def __init__(self) -> None:
        self.records: List[EventRecord] = []
        self._last_ts: Optional[datetime] = None

    async def append(self, record: EventRecord) -> None:
        record = stamp_after(record, self._last_ts)
        self._last_ts = record.ts
        self.records.append(record)

    def kinds(self) -> List[str]:
        """Return the event kinds in append order."""
        return [record.kind for record in self.records]

    def of_kind(self, kind: str) -> List[EventRecord]:
        return [record for record in self.records if record.kind == kind]
