"""
User-facing activity log (the console pane of the app).

Entries are also forwarded to the standard logging module so that batch
progress ends up in the regular logs.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ENTRY_TYPES = ("info", "success", "warning", "error")

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class LogEntry:
    """A single console line."""

    timestamp: str
    message: str
    type: str = "info"

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "message": self.message, "type": self.type}


class ActivityLog:
    """Bounded, append-only list of console entries."""

    MAX_ENTRIES = 500

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now
        self._entries: deque = deque(maxlen=self.MAX_ENTRIES)
        self._listeners: list[Callable[[LogEntry], None]] = []

    def subscribe(self, listener: Callable[[LogEntry], None]) -> None:
        self._listeners.append(listener)

    def log(self, message: str, type: str = "info") -> LogEntry:
        if type not in ENTRY_TYPES:
            raise ValueError(f"Unknown log entry type: {type}")
        entry = LogEntry(
            timestamp=self._clock().strftime("%H:%M:%S"),
            message=message,
            type=type,
        )
        self._entries.append(entry)
        logger.log(_LEVELS[type], message)
        for listener in list(self._listeners):
            listener(entry)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.log(message, "info")

    def success(self, message: str) -> LogEntry:
        return self.log(message, "success")

    def warning(self, message: str) -> LogEntry:
        return self.log(message, "warning")

    def error(self, message: str) -> LogEntry:
        return self.log(message, "error")

    def clear(self) -> None:
        """Drop every entry, leaving a single note that the console was cleared."""
        self._entries.clear()
        self.info("Workspace and Console cleared.")

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
