"""TrafficLog: bounded, pausable record of transmitted/received frames and protocol errors."""

import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from .codec import format_hex

DEFAULT_MAX_ENTRIES = 1000


class Direction(str, Enum):
    TX = "TX"
    RX = "RX"
    ERROR = "ERROR"


@dataclass(frozen=True)
class TrafficEntry:
    timestamp: datetime
    direction: Direction
    data: str
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "direction": self.direction.value,
            "data": self.data,
            "error": self.error,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrafficLog:
    """
    Append-only log capped at ``max_entries`` (oldest evicted first).

    Timestamps never go backwards even if the wall clock does. While paused,
    new entries are dropped silently.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_entries <= 0:
            raise ValueError(f"max_entries must be > 0, got {max_entries}")
        self._entries: deque[TrafficEntry] = deque(maxlen=max_entries)
        self._clock = clock
        self._last: datetime | None = None
        self._paused = False
        self.on_entry: Callable[[TrafficEntry], None] | None = None

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def clear(self) -> None:
        self._entries.clear()

    def _stamp(self) -> datetime:
        now = self._clock()
        if self._last is not None and now < self._last:
            now = self._last
        self._last = now
        return now

    def _append(self, entry: TrafficEntry) -> None:
        self._entries.append(entry)
        if self.on_entry is not None:
            self.on_entry(entry)

    def log(self, direction: Direction, frame: bytes, error: str | None = None) -> None:
        if self._paused:
            return
        self._append(TrafficEntry(self._stamp(), Direction(direction), format_hex(frame), error))

    def log_tx(self, frame: bytes) -> None:
        self.log(Direction.TX, frame)

    def log_rx(self, frame: bytes, error: str | None = None) -> None:
        self.log(Direction.RX, frame, error)

    def log_error(self, message: str) -> None:
        if self._paused:
            return
        self._append(TrafficEntry(self._stamp(), Direction.ERROR, message, message))

    @property
    def entries(self) -> list[TrafficEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def export(self) -> dict[str, Any]:
        """Structured document of every retained entry, oldest first."""
        return {
            "exportedAt": _utcnow().isoformat(),
            "count": len(self._entries),
            "maxEntries": self.max_entries,
            "entries": [e.to_dict() for e in self._entries],
        }

    def export_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.export(), indent=indent)
