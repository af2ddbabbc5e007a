"""Append-only log stream for the operator console."""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import List

DEFAULT_CAPACITY = 1000


class LogBuffer(logging.Handler):
    """Logging handler keeping the most recent lines as ``[timestamp] [LEVEL] message``."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        super().__init__()
        self._lines = deque(maxlen=capacity)
        self._lines_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
            line = f"[{timestamp}] [{record.levelname}] {record.getMessage()}"
            with self._lines_lock:
                self._lines.append(line)
        except Exception:
            self.handleError(record)

    def lines(self, limit: int = 100) -> List[str]:
        """Return up to ``limit`` most recent lines, oldest first."""
        with self._lines_lock:
            if limit <= 0:
                return []
            return list(self._lines)[-limit:]

    def clear(self) -> None:
        with self._lines_lock:
            self._lines.clear()
