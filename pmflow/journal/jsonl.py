"""Line-delimited JSON journal stored next to the project."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..contracts import AuditTrailError, EventRecord
from .base import EventJournal, stamp_after


class JsonlJournal(EventJournal):
    """Append every record as one JSON line.

    The file is opened, written and flushed for each record so the journal
    stays complete even if the run is interrupted. Writes run in a worker
    thread; appends are serialized so lines keep their timestamp order.
    """

    def __init__(self, path: str | Path, fsync: bool = True) -> None:
        self.path = Path(path)
        self.fsync = fsync
        self._last_ts: Optional[datetime] = None
        self._lock = asyncio.Lock()

    async def append(self, record: EventRecord) -> None:
        async with self._lock:
            record = stamp_after(record, self._last_ts)
            await asyncio.to_thread(self._write_line, record.to_json() + "\n")
            self._last_ts = record.ts

    def _write_line(self, line: str) -> None:
        try:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line)
                fh.flush()
                if self.fsync:
                    os.fsync(fh.fileno())
        except OSError as exc:
            raise AuditTrailError(f"Failed to append to journal {self.path}: {exc}") from exc


def read_journal(path: str | Path) -> List[EventRecord]:
    """Parse a journal file into records, ignoring blank lines."""
    records: List[EventRecord] = []
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if line:
                records.append(EventRecord.from_json(line))
    return records
