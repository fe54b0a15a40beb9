"""Event journal backends for pmflow runs."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..config import PmConfig
from .base import EventJournal
from .inmemory import InMemoryJournal
from .jsonl import JsonlJournal, read_journal


def get_journal(
    path: Optional[str | Path] = None, config: Optional[PmConfig] = None
) -> EventJournal:
    """Factory function to obtain a journal.

    A file journal is returned when ``path`` is given, otherwise an
    in-memory journal.
    """

    if path is None:
        return InMemoryJournal()
    fsync = config.journal.fsync if config is not None else True
    return JsonlJournal(path, fsync=fsync)


__all__ = [
    "EventJournal",
    "InMemoryJournal",
    "JsonlJournal",
    "get_journal",
    "read_journal",
]
