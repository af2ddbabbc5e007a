"""Conflict resolution hand-off for failed merges."""

import logging
from enum import Enum
from typing import List, Optional, Protocol

from ..errors import SyncError, NothingToAbortError


class ConflictChoice(Enum):
    """Terminal actions offered to the user."""
    OPEN = "open"
    ABORT = "abort"


class ConflictOutcome(Enum):
    """Result of a conflict resolution round."""
    RESOLVED = "resolved"
    ABORTED = "aborted"


class ConflictPrompt(Protocol):
    """User-facing boundary the resolver talks to."""

    def choose(self, message: str, paths: List[str]) -> Optional[ConflictChoice]:
        """Ask the user what to do; None means the prompt was dismissed."""
        ...

    def open_paths(self, paths: List[str]) -> None:
        """Open the conflicted paths for manual editing."""
        ...


class ConflictAborter(Protocol):
    def abort_rebase(self) -> None:
        ...

    def abort_merge(self) -> None:
        ...


class DeferredConflictPrompt:
    """
    Prompt for hosts without an interactive surface.

    Records the conflicted paths and leaves the decision to a later explicit
    command (``abort_conflict`` or a manual ``sync_now`` after editing).
    """

    def __init__(self):
        self.pending: List[str] = []
        self.last_message: Optional[str] = None

    def choose(self, message: str, paths: List[str]) -> Optional[ConflictChoice]:
        self.pending = list(paths)
        self.last_message = message
        return None

    def open_paths(self, paths: List[str]) -> None:
        self.pending = list(paths)


def format_conflict_message(paths: List[str], sample_size: int = 3) -> str:
    """Summarize a conflicted set as a count plus a few sample paths."""
    count = len(paths)
    sample = ", ".join(paths[:sample_size])
    if count > sample_size:
        sample += f", ... ({count - sample_size} more)"
    return (
        f"Merge conflict detected in {count} file(s): {sample}. "
        "Resolve the conflicts and sync again, or abort the merge."
    )


class ConflictResolver:
    """
    Drive the bounded open-or-abort decision for a conflicted working tree.

    No content-level resolution is attempted: the user either edits the files
    (the engine stays in ``CONFLICT`` until re-triggered) or the in-progress
    rebase/merge is aborted.
    """

    def __init__(self, repository: ConflictAborter, prompt: ConflictPrompt):
        self.repository = repository
        self.prompt = prompt
        self.logger = logging.getLogger('leafsync.conflicts')

    def resolve(self, conflicted_paths: List[str]) -> ConflictOutcome:
        """
        Present the conflicted set and carry out the user's choice.

        Args:
            conflicted_paths: Paths with unresolved conflict markers

        Returns:
            RESOLVED when the files were opened (or nothing was conflicted),
            ABORTED when the in-progress operation was aborted
        """
        if not conflicted_paths:
            self.logger.info("No conflicted files reported")
            return ConflictOutcome.RESOLVED

        message = format_conflict_message(conflicted_paths)
        self.logger.warning(message)

        choice = self.prompt.choose(message, list(conflicted_paths))

        if choice == ConflictChoice.ABORT:
            self.abort()
            return ConflictOutcome.ABORTED

        if choice == ConflictChoice.OPEN:
            self.prompt.open_paths(list(conflicted_paths))
            self.logger.info(f"Opened {len(conflicted_paths)} conflicted file(s) for editing")

        return ConflictOutcome.RESOLVED

    def abort(self) -> None:
        """Abort the in-progress rebase, falling back to aborting a merge."""
        try:
            self.repository.abort_rebase()
            self.logger.info("Rebase aborted")
            return
        except NothingToAbortError:
            self.logger.debug("No rebase in progress, aborting merge instead")
        except SyncError as e:
            self.logger.warning(f"Rebase abort failed, aborting merge instead: {e}")

        try:
            self.repository.abort_merge()
            self.logger.info("Merge aborted")
        except NothingToAbortError:
            self.logger.info("Nothing to abort")
