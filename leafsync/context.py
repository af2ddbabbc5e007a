"""Application context owning the sync engine and its collaborators."""

import logging
from pathlib import Path
from typing import List, Optional, Union

from .config import Config
from .errors import AuthError, SyncError
from .git_sync.clone import read_marker
from .git_sync.conflicts import ConflictPrompt, DeferredConflictPrompt
from .git_sync.engine import CycleResult, SyncEngine
from .git_sync.gitignore import ensure_gitignore, find_tracked_ignored, untrack_files
from .git_sync.repository import RepositoryAdapter
from .git_sync.state import SyncState
from .status import StatusIndicator
from .watcher import DirtyFlag

SYNC_ON_SAVE_SUFFIXES = (".tex", ".bib")


class AppContext:
    """
    Explicit owner of the engine, adapter, dirty flag and status indicator.

    Lifecycle is ``configure()`` -> ``start()`` -> ``dispose()``; a
    reconfiguration tears the previous engine down first.
    """

    def __init__(
        self,
        config: Config,
        prompt: Optional[ConflictPrompt] = None,
        status: Optional[StatusIndicator] = None,
    ):
        self.config = config
        self.prompt = prompt or DeferredConflictPrompt()
        self.status = status or StatusIndicator()
        self.logger = logging.getLogger('leafsync.context')

        self.repository: Optional[RepositoryAdapter] = None
        self.dirty_flag: Optional[DirtyFlag] = None
        self.engine: Optional[SyncEngine] = None
        self.reconfigure_required = False

    @property
    def configured(self) -> bool:
        return self.engine is not None

    def configure(
        self,
        remote_url: Optional[str] = None,
        token: Optional[str] = None,
        username: Optional[str] = None,
    ) -> bool:
        """
        Build the adapter and engine for the configured workspace.

        Returns:
            True when the engine is ready, False when configuration is
            incomplete or the workspace is not a git repository
        """
        if remote_url:
            self.config.remote_url = remote_url
        if token:
            self.config.token = token
        if username:
            self.config.username = username

        if not self.config.remote_url and self.config.workspace_dir is not None:
            marker = read_marker(self.config.workspace_dir)
            if marker and marker.get("configured"):
                self.config.remote_url = marker.get("projectUrl")

        self._teardown()

        if not self.config.is_configured:
            self.logger.warning("Sync is not configured: workspace, remote URL and token are required")
            self.status.on_state_change(SyncState.NOT_CONFIGURED)
            return False

        repository = RepositoryAdapter(
            self.config.workspace_dir,
            self.config.remote_url,
            self.config.username,
            self.config.token,
        )
        if not repository.is_repository():
            self.logger.warning("Workspace is not a git repository. Use clone_project first.")
            repository.close()
            self.status.on_state_change(SyncState.NOT_CONFIGURED)
            return False

        ensure_gitignore(self.config.workspace_dir, self.config.sync.exclude_patterns)
        try:
            tracked = find_tracked_ignored(self.config.workspace_dir)
        except SyncError as e:
            self.logger.warning(f"Could not check for tracked build artifacts: {e}")
            tracked = []
        if tracked:
            self.logger.warning(
                f"{len(tracked)} tracked file(s) match the ignore rules; run untrack_ignored_files to remove them"
            )

        self.repository = repository
        self.dirty_flag = DirtyFlag(self.config.workspace_dir, self.config.sync.exclude_patterns)
        self.engine = SyncEngine(
            repository,
            self.dirty_flag,
            self.config.sync,
            observer=self.status,
            prompt=self.prompt,
            auth_failure_handler=self._on_auth_failure,
        )
        self.reconfigure_required = False
        self.logger.info(f"Sync configured for {self.config.workspace_dir} ({repository.display_url})")
        return True

    def start(self) -> Optional[CycleResult]:
        """Pull on open (when enabled) and start the periodic timer."""
        if self.engine is None:
            return None

        result = None
        if self.config.sync.pull_on_open:
            result = self.engine.sync_now()

        if self.config.sync.enabled:
            self.engine.start()
        else:
            self.engine.disable_auto_sync()
        return result

    def notify_saved(self, path: Union[str, Path]) -> Optional[CycleResult]:
        """Mark a saved file dirty and sync right away for document sources."""
        if self.engine is None or self.dirty_flag is None:
            return None

        if self.dirty_flag.should_ignore(path):
            return None

        if self.config.sync.push_on_save or str(path).endswith(SYNC_ON_SAVE_SUFFIXES):
            self.logger.info("File saved, triggering sync...")
            self.dirty_flag.mark_dirty(immediate=True)
            return self.engine.sync_now()

        self.dirty_flag.mark_dirty()
        return None

    def untrack_ignored(self) -> List[str]:
        """Remove tracked files matching the ignore rules from the index and commit."""
        if self.repository is None:
            return []
        paths = find_tracked_ignored(self.config.workspace_dir)
        untrack_files(self.config.workspace_dir, paths)
        return paths

    def _on_auth_failure(self, error: AuthError) -> None:
        self.reconfigure_required = True
        self.logger.error("Authentication failed. Please reconfigure your credentials.")

    def logout(self) -> None:
        """Forget the token and stop syncing."""
        self._teardown()
        self.config.token = None
        self.status.on_state_change(SyncState.NOT_CONFIGURED)
        self.logger.info("Credentials cleared")

    def dispose(self) -> None:
        self._teardown()

    def _teardown(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
        if self.dirty_flag is not None:
            self.dirty_flag.dispose()
            self.dirty_flag = None
        if self.repository is not None:
            self.repository.close()
            self.repository = None
