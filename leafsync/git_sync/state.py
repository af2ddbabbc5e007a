"""Sync state and retry bookkeeping for the reconciliation engine."""

from dataclasses import dataclass
from enum import Enum

MAX_RETRY_DELAY = 60.0


class SyncState(Enum):
    """Enumeration of engine states, exactly one of which is current."""
    IDLE = "idle"
    PULLING = "pulling"
    PUSHING = "pushing"
    CONFLICT = "conflict"
    ERROR = "error"
    DISABLED = "disabled"
    NOT_CONFIGURED = "not_configured"


@dataclass
class RetryState:
    """Consecutive failure count driving exponential backoff."""
    consecutive_failures: int = 0

    def record_failure(self) -> None:
        self.consecutive_failures += 1

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def next_delay(self, base_interval: float) -> float:
        """
        Delay before the next scheduled cycle.

        Returns the base interval after a success and doubles it per
        consecutive failure, capped at 60 seconds (or the base interval when
        that is already longer).
        """
        if self.consecutive_failures <= 0:
            return base_interval
        cap = max(MAX_RETRY_DELAY, base_interval)
        exponent = min(self.consecutive_failures, 32)
        return min(base_interval * (2 ** exponent), cap)
