"""Bounded in-memory log of ingestion events.

Hosts create one :class:`EventLog` and pass it to parse jobs and the
reconciler. Once the buffer is full the oldest events are discarded.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

from .config import DEFAULT_EVENT_LOG_SIZE

EventKind: TypeAlias = Literal[
    "file_upload",
    "upload_rejected",
    "parse_completed",
    "parse_failed",
    "import_completed",
    "import_failed",
]

EVENT_KINDS: frozenset[str] = frozenset(
    {
        "file_upload",
        "upload_rejected",
        "parse_completed",
        "parse_failed",
        "import_completed",
        "import_failed",
    }
)


@dataclass(frozen=True, slots=True)
class IngestEvent:
    kind: EventKind
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "timestamp": self.timestamp.isoformat(), **self.details}


class EventLog:
    """Thread-safe ring buffer of :class:`IngestEvent` records."""

    def __init__(self, maxlen: int = DEFAULT_EVENT_LOG_SIZE) -> None:
        if maxlen < 1:
            raise ValueError("maxlen must be a positive integer")
        self._events: deque[IngestEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    @property
    def maxlen(self) -> int:
        return self._events.maxlen or 0

    def record(self, kind: EventKind, **details: Any) -> IngestEvent:
        if kind not in EVENT_KINDS:
            raise ValueError(f"unknown event kind: {kind!r}")
        event = IngestEvent(kind=kind, timestamp=datetime.now(UTC), details=dict(details))
        with self._lock:
            self._events.append(event)
        return event

    def recent(self, limit: int = 100) -> list[IngestEvent]:
        """Most recent events, newest first."""

        with self._lock:
            snapshot = list(self._events)
        return snapshot[::-1][: max(limit, 0)]

    def by_kind(self, kind: EventKind, limit: int = 100) -> list[IngestEvent]:
        with self._lock:
            snapshot = list(self._events)
        matches = [e for e in reversed(snapshot) if e.kind == kind]
        return matches[: max(limit, 0)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


__all__ = ["EventKind", "EVENT_KINDS", "IngestEvent", "EventLog"]
