"""Repository adapter wrapping git primitives with GitPython.

All commands against one working tree go through a single re-entrant lock, so
at most one git command is in flight per adapter.  Adapters for different
working trees are independent.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Type, TypeVar

from git import Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..credentials import build_authenticated_url, redact_credentials, strip_credentials
from ..errors import (
    SyncError,
    NotARepositoryError,
    RebaseConflictError,
    MergeConflictError,
    classify_git_error,
)

T = TypeVar("T")

REMOTE_NAME = "origin"


@dataclass
class RepositorySnapshot:
    """Working tree status derived fresh on every sync cycle."""
    branch: Optional[str]
    ahead_count: int = 0
    behind_count: int = 0
    working_tree_dirty: bool = False
    conflicted_paths: List[str] = field(default_factory=list)
    upstream: Optional[str] = None
    merge_in_progress: bool = False

    @property
    def tracking_known(self) -> bool:
        """Whether ahead/behind counts came from a configured upstream."""
        return self.upstream is not None


def parse_porcelain_status(output: str) -> RepositorySnapshot:
    """
    Parse ``git status --porcelain=v2 --branch -z`` output.

    Args:
        output: Raw NUL-separated status output

    Returns:
        RepositorySnapshot with branch, tracking counts and changed paths
    """
    snapshot = RepositorySnapshot(branch=None)
    entries = iter(output.split("\0"))

    for entry in entries:
        if not entry:
            continue

        if entry.startswith("# branch.head "):
            head = entry[len("# branch.head "):]
            snapshot.branch = None if head == "(detached)" else head
        elif entry.startswith("# branch.upstream "):
            snapshot.upstream = entry[len("# branch.upstream "):]
        elif entry.startswith("# branch.ab "):
            ahead, behind = entry[len("# branch.ab "):].split()
            snapshot.ahead_count = abs(int(ahead))
            snapshot.behind_count = abs(int(behind))
        elif entry.startswith("1 ") or entry.startswith("? "):
            snapshot.working_tree_dirty = True
        elif entry.startswith("2 "):
            snapshot.working_tree_dirty = True
            # Renames carry the original path as the next NUL-separated field
            next(entries, None)
        elif entry.startswith("u "):
            snapshot.working_tree_dirty = True
            snapshot.conflicted_paths.append(entry.split(" ", 10)[10])

    return snapshot


class RepositoryAdapter:
    """
    Serialized access to one working tree and its remote.

    The authenticated remote URL is built once at construction time and used
    directly for fetch, pull and push, so the token is never written into the
    repository configuration or surfaced in logs.
    """

    def __init__(self, workspace_path: Path, remote_url: str, username: str, token: str):
        """
        Initialize the adapter.

        Args:
            workspace_path: Working tree to operate on
            remote_url: Remote repository URL without credentials
            username: Username for the remote
            token: Access token for the remote
        """
        self.workspace_path = Path(workspace_path)
        self.logger = logging.getLogger('leafsync.git')
        self._remote_url = build_authenticated_url(remote_url, username, token)
        self._display_url = strip_credentials(remote_url)
        self._lock = threading.RLock()
        self._repo: Optional[Repo] = None
        self._branch: Optional[str] = None

    @property
    def display_url(self) -> str:
        """Remote URL safe to show in logs and UI."""
        return self._display_url

    def _open(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.workspace_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise NotARepositoryError(
                    f"{self.workspace_path} is not a git repository", "open_repository"
                ) from e
        return self._repo

    def _run(
        self,
        operation: str,
        func: Callable[[Repo], T],
        conflict_kind: Optional[Type[SyncError]] = None,
    ) -> T:
        with self._lock:
            repo = self._open()
            self.logger.debug(f"git {operation} ({self.workspace_path})")
            try:
                return func(repo)
            except GitCommandError as e:
                error = classify_git_error(e, operation, conflict_kind)
                error.message = redact_credentials(error.message)
                error.args = (error.message,)
                self.logger.debug(f"git {operation} failed: {type(error).__name__}")
                # The original exception carries the authenticated command line
                raise error from None

    def is_repository(self) -> bool:
        """Check whether the workspace is a valid (non-bare) working tree."""
        with self._lock:
            try:
                repo = self._open()
            except NotARepositoryError:
                return False
            return not repo.bare

    def fetch(self) -> None:
        """Retrieve remote refs without moving local branch pointers."""
        branch = self.branch_name()
        refspec = f"+refs/heads/{branch}:refs/remotes/{REMOTE_NAME}/{branch}"
        self.logger.debug(f"Fetching {branch} from {self._display_url}")
        self._run("fetch", lambda repo: repo.git.fetch(self._remote_url, refspec))

    def branch_name(self) -> str:
        """
        Return the remote default branch, resolved once per adapter lifetime.

        Selects ``main`` when the remote has it, otherwise ``master``.  The
        result is never re-probed, even if the remote default branch changes
        later in the session.
        """
        with self._lock:
            if self._branch is not None:
                return self._branch

            heads = self._run(
                "list_remote_branches",
                lambda repo: repo.git.ls_remote("--heads", self._remote_url),
            )
            names = set()
            for line in heads.splitlines():
                parts = line.split("\t", 1)
                if len(parts) == 2 and parts[1].startswith("refs/heads/"):
                    names.add(parts[1][len("refs/heads/"):])

            self._branch = "main" if "main" in names else "master"
            self.logger.info(f"Using remote branch '{self._branch}'")
            return self._branch

    def pull_fast_forward(self) -> None:
        """Integrate remote history only if local history is a strict prefix of it."""
        branch = self.branch_name()
        self._run(
            "pull_fast_forward",
            lambda repo: repo.git.pull("--ff-only", self._remote_url, branch),
        )

    def pull_rebase(self) -> None:
        """Replay local commits on top of the remote branch."""
        branch = self.branch_name()
        self._run(
            "pull_rebase",
            lambda repo: repo.git.pull("--rebase", self._remote_url, branch),
            conflict_kind=RebaseConflictError,
        )

    def pull_merge(self) -> None:
        """Merge the remote branch into the local branch."""
        branch = self.branch_name()
        self._run(
            "pull_merge",
            lambda repo: repo.git.pull("--no-rebase", "--no-edit", self._remote_url, branch),
            conflict_kind=MergeConflictError,
        )

    def push(self) -> None:
        """Push the local branch to the remote default branch."""
        branch = self.branch_name()
        self._run(
            "push",
            lambda repo: repo.git.push(self._remote_url, f"HEAD:refs/heads/{branch}"),
        )

    def commit_all(self, message: str) -> None:
        """
        Stage every change, deletions included, and create one commit.

        Callers check ``status()`` first; committing a clean tree is an
        error, not a no-op, unless it concludes a merge in progress.
        """
        def commit(repo: Repo) -> None:
            repo.git.add("-A")
            repo.git.commit("-m", message)

        self._run("commit_all", commit)

    def status(self) -> RepositorySnapshot:
        """Return branch, tracking counts, dirtiness and conflicts in one call."""
        def read_status(repo: Repo) -> RepositorySnapshot:
            snapshot = parse_porcelain_status(repo.git.status("--porcelain=v2", "--branch", "-z"))
            # A merge whose conflicts were resolved to HEAD leaves no status entries
            snapshot.merge_in_progress = (Path(repo.git_dir) / "MERGE_HEAD").exists()
            return snapshot

        return self._run("status", read_status)

    def has_remote_changes(self) -> bool:
        """Compare HEAD with FETCH_HEAD; only meaningful right after ``fetch()``."""
        try:
            local = self._run("rev_parse_head", lambda repo: repo.git.rev_parse("HEAD"))
            remote = self._run("rev_parse_fetch_head", lambda repo: repo.git.rev_parse("FETCH_HEAD"))
        except SyncError as e:
            self.logger.debug(f"Cannot compare HEAD with FETCH_HEAD: {e}")
            return False
        return local != remote

    def abort_rebase(self) -> None:
        """Abort an in-progress rebase; raises NothingToAbortError if none."""
        self._run("abort_rebase", lambda repo: repo.git.rebase("--abort"))

    def abort_merge(self) -> None:
        """Abort an in-progress merge; raises NothingToAbortError if none."""
        self._run("abort_merge", lambda repo: repo.git.merge("--abort"))

    def conflicted_files(self) -> List[str]:
        """Paths that still have unresolved conflicts."""
        return self.status().conflicted_paths

    def close(self) -> None:
        """Release git helper processes held by the repository object."""
        with self._lock:
            if self._repo is not None:
                self._repo.close()
                self._repo = None
