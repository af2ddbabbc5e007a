"""Debounced local dirty signal.

The filesystem watcher itself lives in the host; it (and save hooks) report
changed paths here.  Paths inside ``.git`` or matching the exclude patterns
never mark the workspace dirty.
"""

import fnmatch
import logging
import threading
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Union

DEBOUNCE_SECONDS = 0.5


class DirtyFlag:
    """Thread-safe debounced boolean set by local file changes."""

    def __init__(
        self,
        workspace_dir: Path,
        exclude_patterns: Iterable[str] = (),
        debounce_seconds: float = DEBOUNCE_SECONDS,
    ):
        self.workspace_dir = Path(workspace_dir)
        self.exclude_patterns = tuple(exclude_patterns)
        self.debounce_seconds = debounce_seconds
        self.logger = logging.getLogger('leafsync.watcher')
        self._lock = threading.Lock()
        self._dirty = False
        self._pending: Optional[threading.Timer] = None

    @property
    def is_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def should_ignore(self, path: Union[str, Path]) -> bool:
        """Whether a changed path should be ignored for sync purposes."""
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.relative_to(self.workspace_dir)
            except ValueError:
                return True

        relative = PurePosixPath(candidate.as_posix())
        if ".git" in relative.parts:
            return True

        return any(
            fnmatch.fnmatch(relative.name, pattern) or fnmatch.fnmatch(str(relative), pattern)
            for pattern in self.exclude_patterns
        )

    def notify_change(self, path: Union[str, Path]) -> bool:
        """
        Report a changed path.

        Returns:
            True if the change counts towards the dirty signal
        """
        if self.should_ignore(path):
            self.logger.debug(f"Ignoring change to {path}")
            return False
        self.mark_dirty()
        return True

    def mark_dirty(self, immediate: bool = False) -> None:
        """Set the flag once the debounce window passes without new events."""
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
            if immediate or self.debounce_seconds <= 0:
                self._dirty = True
                return
            timer = threading.Timer(self.debounce_seconds, self._set_dirty)
            timer.daemon = True
            self._pending = timer
            timer.start()

    def _set_dirty(self) -> None:
        with self._lock:
            self._dirty = True
            self._pending = None

    def reset(self) -> None:
        """Clear the flag after a successful sync."""
        with self._lock:
            self._dirty = False

    def dispose(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
