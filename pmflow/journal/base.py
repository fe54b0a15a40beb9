"""Journal abstraction for the run audit trail."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Protocol

from ..contracts import EventRecord

_TICK = timedelta(microseconds=1)


class EventJournal(Protocol):
    """Append-only sink for execution events."""

    async def append(self, record: EventRecord) -> None:
        """Durably store ``record`` before returning."""


def stamp_after(record: EventRecord, previous: Optional[datetime]) -> EventRecord:
    """Return ``record`` with a timestamp strictly later than ``previous``."""
    if previous is None or record.ts > previous:
        return record
    return record.model_copy(update={"ts": previous + _TICK})
