"""Status indicator fed by the engine's state channel."""

import logging
from dataclasses import dataclass
from typing import Dict

from .git_sync.state import SyncState


@dataclass(frozen=True)
class StatusView:
    """What the host should display for a state."""
    label: str
    tooltip: str
    action: str


_VIEWS: Dict[SyncState, StatusView] = {
    SyncState.IDLE: StatusView("Synced", "Synced with the remote. Run sync_now to sync immediately.", "sync_now"),
    SyncState.PULLING: StatusView("Pulling...", "Pulling remote changes...", "sync_now"),
    SyncState.PUSHING: StatusView("Pushing...", "Pushing local changes...", "sync_now"),
    SyncState.CONFLICT: StatusView("Conflict", "Merge conflict detected. Resolve it, then run sync_now.", "sync_now"),
    SyncState.ERROR: StatusView("Sync Error", "Sync failed. Run sync_now to retry.", "sync_now"),
    SyncState.DISABLED: StatusView("Sync Off", "Auto-sync paused. Run resume_sync to enable.", "resume_sync"),
    SyncState.NOT_CONFIGURED: StatusView("Setup leafsync", "Configure the remote project to start syncing.", "configure"),
}


def view_for(state: SyncState) -> StatusView:
    return _VIEWS[state]


class StatusIndicator:
    """Keeps the current state and its display view."""

    def __init__(self):
        self.state = SyncState.NOT_CONFIGURED
        self.logger = logging.getLogger('leafsync.status')

    def on_state_change(self, state: SyncState) -> None:
        if state != self.state:
            self.logger.debug(f"Status: {self.state.value} -> {state.value}")
        self.state = state

    @property
    def view(self) -> StatusView:
        return view_for(self.state)
