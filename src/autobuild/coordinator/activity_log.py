"""Bounded activity log of timestamped, typed entries."""

from __future__ import annotations

import logging
import secrets
import time
from collections import deque
from typing import Any, Callable

from autobuild.protocol.models import LogEntry, LogType, utc_now_iso

logger = logging.getLogger(__name__)

# Where components send user-facing entries; the coordinator passes its own
# log() so every entry also reaches the event bus.
LogSink = Callable[[LogType, str, str | None], Any]

_LEVELS: dict[str, int] = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
}


class ActivityLog:
    """Append-only ring that keeps the most recent *capacity* entries.

    Each entry is mirrored to the module logger so headless runs see the
    same record the activity view does.
    """

    def __init__(self, capacity: int = 100) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, type: LogType, message: str, issue_id: str | None = None) -> LogEntry:
        entry = LogEntry(
            id=f"{int(time.time() * 1000)}-{secrets.token_hex(4)}",
            timestamp=utc_now_iso(),
            type=type,
            message=message,
            issue_id=issue_id,
        )
        self._entries.append(entry)
        level = _LEVELS.get(type, logging.INFO)
        if issue_id:
            logger.log(level, "[%s] %s", issue_id, message)
        else:
            logger.log(level, "%s", message)
        return entry

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def recent(self, n: int = 20) -> list[LogEntry]:
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def for_issue(self, issue_id: str) -> list[LogEntry]:
        return [e for e in self._entries if e.issue_id == issue_id]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
