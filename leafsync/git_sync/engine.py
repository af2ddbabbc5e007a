"""Reconciliation engine keeping a working tree and its remote in step.

Each cycle fetches once, classifies local and remote changes, and runs exactly
one of four strategies:

- nothing changed: stay idle
- remote only: fast-forward pull
- local only: commit and push
- both: commit, rebase (falling back to merge), push

A merge that cannot complete hands off to the ``ConflictResolver`` and halts
the periodic timer until the user acts.  All adapter failures stop at the
cycle boundary.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Protocol

from ..config import SyncConfig
from ..errors import (
    SyncError,
    AuthError,
    NetworkError,
    NotARepositoryError,
    describe_error,
)
from .conflicts import ConflictOutcome, ConflictPrompt, ConflictResolver, DeferredConflictPrompt
from .repository import RepositoryAdapter, RepositorySnapshot
from .state import RetryState, SyncState


class ChangeDetector(Protocol):
    """Debounced local dirty signal."""

    @property
    def is_dirty(self) -> bool:
        ...

    def reset(self) -> None:
        ...


class StateObserver(Protocol):
    """Single outbound channel for state changes (the status indicator)."""

    def on_state_change(self, state: SyncState) -> None:
        ...


AuthFailureHandler = Callable[[AuthError], None]


class CycleOutcome(Enum):
    """What a single reconciliation cycle ended up doing."""
    SKIPPED = "skipped"
    NOT_A_REPOSITORY = "not_a_repository"
    UP_TO_DATE = "up_to_date"
    PULLED = "pulled"
    PUSHED = "pushed"
    SYNCED = "synced"
    CONFLICT = "conflict"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"


@dataclass
class CycleResult:
    """Result of one reconciliation cycle."""
    outcome: CycleOutcome
    state: SyncState
    message: str
    retry_delay: Optional[float] = None
    conflicted_paths: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome in (
            CycleOutcome.UP_TO_DATE,
            CycleOutcome.PULLED,
            CycleOutcome.PUSHED,
            CycleOutcome.SYNCED,
        )


class SyncEngine:
    """
    Owns the sync state machine, the periodic timer and retry bookkeeping.

    Triggers (timer ticks, ``sync_now``, post-save hooks) all funnel into
    ``run_cycle``.  An in-flight guard drops triggers that arrive while a
    cycle is running; the next tick picks up anything missed.
    """

    def __init__(
        self,
        repository: RepositoryAdapter,
        change_detector: ChangeDetector,
        config: SyncConfig,
        observer: Optional[StateObserver] = None,
        prompt: Optional[ConflictPrompt] = None,
        auth_failure_handler: Optional[AuthFailureHandler] = None,
    ):
        """
        Initialize the engine.

        Args:
            repository: Adapter for the working tree
            change_detector: Source of the local dirty signal
            config: Sync settings for this activation
            observer: Receives every state transition
            prompt: User-facing conflict prompt (deferred when omitted)
            auth_failure_handler: Called when credentials are rejected
        """
        self.repository = repository
        self.change_detector = change_detector
        self.config = config
        self.conflict_resolver = ConflictResolver(repository, prompt or DeferredConflictPrompt())
        self.retry = RetryState()
        self.next_delay: Optional[float] = config.interval_seconds
        self.logger = logging.getLogger('leafsync.sync')

        self._observer = observer
        self._auth_failure_handler = auth_failure_handler
        self._state = SyncState.NOT_CONFIGURED
        self._guard = threading.Lock()
        self._cycle_done = threading.Condition(self._guard)
        self._cycle_thread: Optional[int] = None
        self._in_flight = False
        self._paused = False
        self._disposed = False

        self._timer_lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._auto_sync = False
        self._timer_halted = False

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def timer_running(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    @property
    def consecutive_failures(self) -> int:
        return self.retry.consecutive_failures

    def _set_state(self, state: SyncState) -> None:
        self._state = state
        observer = self._observer
        if self._disposed or observer is None:
            return
        try:
            observer.on_state_change(state)
        except Exception as e:
            self.logger.warning(f"State observer failed for {state.value}: {e}")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic timer."""
        if self._disposed:
            return
        with self._timer_lock:
            if self._timer is not None:
                return
            self._auto_sync = True
            # A conflict or rejected credentials keep the timer halted until resume
            if not self._timer_halted:
                self._schedule(self.config.interval_seconds)
        self.logger.info(f"Auto-sync started (every {self.config.interval_seconds:g}s)")
        if self._state == SyncState.NOT_CONFIGURED:
            self._set_state(SyncState.IDLE)

    def stop(self) -> None:
        """Stop the periodic timer; an in-flight cycle runs to completion."""
        with self._timer_lock:
            self._auto_sync = False
            self._cancel_timer()
        self.logger.info("Auto-sync stopped")

    def disable_auto_sync(self) -> None:
        """Run without a timer; explicit triggers still start cycles."""
        self.stop()
        if self._state not in (SyncState.CONFLICT, SyncState.ERROR):
            self._set_state(SyncState.DISABLED)

    def pause(self) -> None:
        """Drop every trigger until ``resume``."""
        self._paused = True
        self.logger.info("Auto-sync paused")
        self._set_state(SyncState.DISABLED)

    def resume(self) -> None:
        """Clear a pause or a conflict hold and restart a halted timer."""
        self._paused = False
        if self._state in (SyncState.DISABLED, SyncState.CONFLICT):
            self._set_state(SyncState.IDLE)
        self._restart_halted_timer()
        self.logger.info("Auto-sync resumed")

    def sync_now(self) -> CycleResult:
        """Run one cycle immediately; an explicit trigger also leaves CONFLICT."""
        return self.run_cycle(manual=True)

    def dispose(self) -> None:
        """
        Stop the timer, wait for a running cycle and release the state channel.

        Once this returns no git command from this engine is in flight, so the
        adapter can be closed and another engine may take over the tree.
        """
        with self._guard:
            self._disposed = True
        self.stop()
        self.wait_idle()
        self._observer = None
        self._auth_failure_handler = None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no cycle is running.

        Returns immediately when called from the thread running the cycle.

        Returns:
            False if the timeout elapsed with a cycle still running
        """
        with self._cycle_done:
            if self._cycle_thread == threading.get_ident():
                return True
            return self._cycle_done.wait_for(lambda: not self._in_flight, timeout)

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _schedule(self, delay: float) -> None:
        timer = threading.Timer(delay, self._tick)
        timer.daemon = True
        timer.name = "leafsync-timer"
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _halt_timer(self) -> None:
        with self._timer_lock:
            self._timer_halted = True
            self._cancel_timer()

    def _restart_halted_timer(self) -> None:
        with self._timer_lock:
            if self._auto_sync and self._timer_halted and self._timer is None and not self._disposed:
                self._timer_halted = False
                self._schedule(self.next_delay or self.config.interval_seconds)

    def _tick(self) -> None:
        with self._timer_lock:
            self._timer = None
        try:
            self.run_cycle(manual=False)
        finally:
            with self._timer_lock:
                if self._auto_sync and not self._timer_halted and self._timer is None and not self._disposed:
                    self._schedule(self.next_delay or self.config.interval_seconds)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _try_enter(self, manual: bool) -> bool:
        with self._guard:
            if self._in_flight or self._paused or self._disposed:
                return False
            if self._state == SyncState.CONFLICT and not manual:
                return False
            self._in_flight = True
            self._cycle_thread = threading.get_ident()
            return True

    def run_cycle(self, manual: bool = False) -> CycleResult:
        """
        Run one reconciliation cycle unless one is already running.

        Args:
            manual: True for explicit user triggers, which may leave CONFLICT

        Returns:
            CycleResult describing the outcome (SKIPPED when the trigger was dropped)
        """
        if not self._try_enter(manual):
            self.logger.debug("Sync trigger dropped (busy, paused or holding a conflict)")
            return CycleResult(CycleOutcome.SKIPPED, self._state, "Sync skipped")

        try:
            result = self._cycle()
            if result.success:
                self._restart_halted_timer()
            return result
        finally:
            with self._cycle_done:
                self._in_flight = False
                self._cycle_thread = None
                self._cycle_done.notify_all()
            if self._paused and not self._disposed and self._state != SyncState.DISABLED:
                self._set_state(SyncState.DISABLED)

    def _cycle(self) -> CycleResult:
        if not self.repository.is_repository():
            self.logger.warning("Workspace is not a git repository")
            return CycleResult(CycleOutcome.NOT_A_REPOSITORY, self._state, "Workspace is not a git repository")

        try:
            self.logger.info("Fetching remote changes...")
            self.repository.fetch()

            snapshot = self.repository.status()
            if snapshot.conflicted_paths:
                self.logger.warning("Working tree still has unresolved conflicts")
                return self._enter_conflict(snapshot.conflicted_paths)

            if snapshot.merge_in_progress:
                # Conflicts were resolved by hand; the merge commit is still owed
                self.logger.info("Concluding merge resolved in the working tree...")
                self._commit_local_changes(snapshot)
                snapshot = self.repository.status()

            local_changes = (
                self.change_detector.is_dirty
                or snapshot.working_tree_dirty
                or snapshot.ahead_count > 0
            )
            if snapshot.tracking_known:
                remote_changes = snapshot.behind_count > 0
            else:
                remote_changes = self.repository.has_remote_changes()

            if not local_changes and not remote_changes:
                self.logger.info("No changes detected")
                return self._succeed(CycleOutcome.UP_TO_DATE, "No changes detected")

            if not local_changes:
                self._set_state(SyncState.PULLING)
                self.logger.info("Pulling remote changes...")
                self.repository.pull_fast_forward()
                self.logger.info("Pull complete")
                return self._succeed(CycleOutcome.PULLED, "Pulled remote changes")

            if not remote_changes:
                self._set_state(SyncState.PUSHING)
                self.logger.info("Committing and pushing local changes...")
                self._commit_local_changes(snapshot)
                self.repository.push()
                self.change_detector.reset()
                self.logger.info("Push complete")
                return self._succeed(CycleOutcome.PUSHED, "Pushed local changes")

            return self._integrate_both(snapshot)

        except NotARepositoryError as e:
            self.logger.warning(f"Workspace is not a git repository: {e}")
            return CycleResult(CycleOutcome.NOT_A_REPOSITORY, self._state, str(e))
        except Exception as e:
            return self._handle_failure(e)

    def _integrate_both(self, snapshot: RepositorySnapshot) -> CycleResult:
        self.logger.info("Both local and remote changes detected. Syncing...")
        # Local work is committed first so the rebase can replay it
        self._commit_local_changes(snapshot)

        self._set_state(SyncState.PULLING)
        try:
            self.repository.pull_rebase()
            how = "Rebase"
        except (AuthError, NetworkError):
            raise
        except SyncError as rebase_error:
            self.logger.warning(f"Rebase failed, attempting merge... ({rebase_error})")
            try:
                self.repository.abort_rebase()
            except SyncError as abort_error:
                self.logger.debug(f"Rebase abort failed: {abort_error}")

            try:
                self.repository.pull_merge()
                how = "Merge"
            except (AuthError, NetworkError):
                raise
            except SyncError as merge_error:
                self.logger.error(f"Merge conflict detected ({merge_error})")
                return self._enter_conflict(None)

        self._set_state(SyncState.PUSHING)
        self.repository.push()
        self.change_detector.reset()
        self.logger.info(f"{how} and push complete")
        return self._succeed(CycleOutcome.SYNCED, f"{how} and push complete")

    def _commit_local_changes(self, snapshot: RepositorySnapshot) -> None:
        if not snapshot.working_tree_dirty and not snapshot.merge_in_progress:
            self.logger.debug("Working tree clean, nothing to commit")
            return
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        self.repository.commit_all(f"{self.config.commit_message} [{timestamp}]")

    def _succeed(self, outcome: CycleOutcome, message: str) -> CycleResult:
        self.retry.record_success()
        self.next_delay = self.config.interval_seconds
        self._set_state(SyncState.IDLE)
        return CycleResult(outcome, self._state, message)

    def _enter_conflict(self, conflicted_paths: Optional[List[str]]) -> CycleResult:
        self._set_state(SyncState.CONFLICT)
        self._halt_timer()

        if conflicted_paths is None:
            try:
                conflicted_paths = self.repository.conflicted_files()
            except SyncError as e:
                self.logger.warning(f"Could not list conflicted files: {e}")
                conflicted_paths = []

        try:
            outcome = self.conflict_resolver.resolve(conflicted_paths)
        except SyncError as e:
            self.logger.error(f"Conflict resolution failed: {e}")
            outcome = ConflictOutcome.RESOLVED

        return CycleResult(
            CycleOutcome.CONFLICT,
            self._state,
            f"Merge conflict ({outcome.value})",
            conflicted_paths=list(conflicted_paths),
        )

    def _handle_failure(self, error: Exception) -> CycleResult:
        self.retry.record_failure()

        if isinstance(error, AuthError):
            self.logger.error(f"Sync failed: {error}")
            self.next_delay = None
            self._set_state(SyncState.ERROR)
            # Credentials cannot heal on their own, so no automatic retry
            self._halt_timer()
            handler = self._auth_failure_handler
            if handler is not None:
                try:
                    handler(error)
                except Exception as e:
                    self.logger.warning(f"Auth failure handler raised: {e}")
            return CycleResult(CycleOutcome.AUTH_FAILED, self._state, describe_error(error))

        if isinstance(error, SyncError):
            self.logger.error(f"Sync failed: {error}")
            message = describe_error(error)
        else:
            self.logger.error(f"Unexpected error during sync: {error}", exc_info=True)
            message = f"Sync failed: {error}"

        self._set_state(SyncState.ERROR)
        delay = self.retry.next_delay(self.config.interval_seconds)
        self.next_delay = delay
        self.logger.info(f"Retrying in {delay:g}s...")
        return CycleResult(CycleOutcome.FAILED, self._state, message, retry_delay=delay)
