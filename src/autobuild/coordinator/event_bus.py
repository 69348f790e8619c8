"""Change notifications for whoever is watching a build run.

The coordinator publishes a ``BuildEvent`` for every state change, phase
transition, activity-log append and agent action.  Watchers (the CLI, tests,
a future UI) subscribe with a plain callable; nothing here is async.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

EventType = Literal["state", "phase", "log", "action"]
Subscriber = Callable[["BuildEvent"], Any]


@dataclass(slots=True)
class BuildEvent:
    event_type: EventType
    issue_id: str = ""
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class EventBus:
    """Synchronous fan-out with a bounded replay buffer.

    A subscriber that raises is logged and skipped; the rest still run.
    With ``persist_path`` set every event is also appended as one JSON line.
    """

    def __init__(self, persist_path: str | None = None, history_limit: int = 500) -> None:
        self._subscribers: list[Subscriber] = []
        self._history: deque[BuildEvent] = deque(maxlen=history_limit)
        self._journal = Path(persist_path) if persist_path else None

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        # bound methods are rebuilt on each attribute access, so compare by equality
        self._subscribers = [cb for cb in self._subscribers if cb != callback]

    def emit(self, event: BuildEvent) -> None:
        self._history.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.debug("Subscriber %r failed on %s event", callback, event.event_type, exc_info=True)
        if self._journal is not None:
            try:
                self._journal.parent.mkdir(parents=True, exist_ok=True)
                with self._journal.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(asdict(event), default=str) + "\n")
            except (OSError, TypeError) as exc:
                logger.debug("Could not journal event to %s: %s", self._journal, exc)

    @property
    def history(self) -> list[BuildEvent]:
        return list(self._history)

    def recent(self, n: int = 20) -> list[BuildEvent]:
        return list(self._history)[-n:] if n > 0 else []
