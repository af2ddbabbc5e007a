"""Error taxonomy for leafsync repository operations.

Failures coming out of the git command backend are translated into typed
errors at the repository adapter boundary, so the sync engine branches on
error kinds rather than on human-readable text.  ``classify_git_error`` is the
only place where stderr text is inspected.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Type

from git import GitCommandError


class ErrorCategory(Enum):
    """Categories of sync errors for appropriate handling."""
    NOT_A_REPOSITORY = "not_a_repository"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    REJECTED = "rejected"
    REBASE_CONFLICT = "rebase_conflict"
    MERGE_CONFLICT = "merge_conflict"
    NOTHING_TO_ABORT = "nothing_to_abort"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class RecoveryAction(Enum):
    """What the engine does after an error of a given category."""
    SKIP_CYCLE = "skip_cycle"
    RETRY = "retry"
    USER_ACTION_REQUIRED = "user_action_required"
    ESCALATE = "escalate"


@dataclass
class ErrorResolution:
    """Information about how to resolve a specific error."""
    category: ErrorCategory
    action: RecoveryAction
    user_message: str
    resolution_steps: List[str]


class SyncError(Exception):
    """Base class for all repository adapter failures."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation} failed: {self.message}"
        return self.message


class NotARepositoryError(SyncError):
    """The workspace is not a git working tree."""
    category = ErrorCategory.NOT_A_REPOSITORY


class NetworkError(SyncError):
    """Transport failure talking to the remote; transient."""
    category = ErrorCategory.NETWORK


class AuthError(SyncError):
    """The remote refused our credentials."""
    category = ErrorCategory.AUTHENTICATION


class RejectedError(SyncError):
    """The remote rejected a push because it advanced since our last pull."""
    category = ErrorCategory.REJECTED


class RebaseConflictError(SyncError):
    """Rebase stopped on unresolved conflicts; a rebase is in progress."""
    category = ErrorCategory.REBASE_CONFLICT


class MergeConflictError(SyncError):
    """Merge stopped on unresolved conflicts; a merge is in progress."""
    category = ErrorCategory.MERGE_CONFLICT


class NothingToAbortError(SyncError):
    """An abort was requested but no matching operation is in progress."""
    category = ErrorCategory.NOTHING_TO_ABORT


class GitOperationError(SyncError):
    """Any other failure of a git command."""
    category = ErrorCategory.UNKNOWN


def build_error_strategies() -> Dict[ErrorCategory, ErrorResolution]:
    """Build user-facing resolution guidance for each error category."""
    return {
        ErrorCategory.NOT_A_REPOSITORY: ErrorResolution(
            category=ErrorCategory.NOT_A_REPOSITORY,
            action=RecoveryAction.SKIP_CYCLE,
            user_message="Workspace is not a git repository",
            resolution_steps=[
                "Clone the project first with the clone_project command",
                "Open the cloned folder as the workspace",
            ],
        ),
        ErrorCategory.NETWORK: ErrorResolution(
            category=ErrorCategory.NETWORK,
            action=RecoveryAction.RETRY,
            user_message="Network connection issue detected",
            resolution_steps=[
                "Check your internet connection",
                "Sync will be retried automatically with increasing delays",
            ],
        ),
        ErrorCategory.AUTHENTICATION: ErrorResolution(
            category=ErrorCategory.AUTHENTICATION,
            action=RecoveryAction.USER_ACTION_REQUIRED,
            user_message="Authentication failed - please reconfigure your credentials",
            resolution_steps=[
                "Generate a new git access token for the project",
                "Run the configure command with the new token",
            ],
        ),
        ErrorCategory.REJECTED: ErrorResolution(
            category=ErrorCategory.REJECTED,
            action=RecoveryAction.RETRY,
            user_message="Remote changed while pushing",
            resolution_steps=[
                "No action needed: the next sync cycle pulls the new remote changes first",
            ],
        ),
        ErrorCategory.REBASE_CONFLICT: ErrorResolution(
            category=ErrorCategory.REBASE_CONFLICT,
            action=RecoveryAction.ESCALATE,
            user_message="Rebase stopped on conflicting changes",
            resolution_steps=[
                "The rebase is aborted and a merge is attempted instead",
            ],
        ),
        ErrorCategory.MERGE_CONFLICT: ErrorResolution(
            category=ErrorCategory.MERGE_CONFLICT,
            action=RecoveryAction.USER_ACTION_REQUIRED,
            user_message="Merge conflicts detected during synchronization",
            resolution_steps=[
                "Open the conflicted files and resolve the conflict markers",
                "Or abort the merge to return to your last local commit",
                "Run sync_now once the conflicts are resolved",
            ],
        ),
        ErrorCategory.CONFIGURATION: ErrorResolution(
            category=ErrorCategory.CONFIGURATION,
            action=RecoveryAction.USER_ACTION_REQUIRED,
            user_message="Sync configuration is incomplete",
            resolution_steps=[
                "Set LEAFSYNC_WORKSPACE, LEAFSYNC_REMOTE_URL and LEAFSYNC_TOKEN",
            ],
        ),
    }


def build_error_patterns() -> List[Tuple[str, Type[SyncError]]]:
    """Build ordered mapping of stderr patterns to error kinds.

    Order matters: authentication is checked before network because git
    reports a 403 as "unable to access ... returned error: 403".
    """
    return [
        # Authentication errors
        ("authentication failed", AuthError),
        ("could not read username", AuthError),
        ("could not read password", AuthError),
        ("invalid credentials", AuthError),
        ("invalid username or password", AuthError),
        ("http 401", AuthError),
        ("http 403", AuthError),
        ("returned error: 401", AuthError),
        ("returned error: 403", AuthError),
        ("permission denied (publickey)", AuthError),

        # Repository errors
        ("not a git repository", NotARepositoryError),

        # Network errors
        ("could not resolve host", NetworkError),
        ("could not resolve hostname", NetworkError),
        ("connection refused", NetworkError),
        ("connection timed out", NetworkError),
        ("operation timed out", NetworkError),
        ("network is unreachable", NetworkError),
        ("no route to host", NetworkError),
        ("connection reset", NetworkError),
        ("temporary failure in name resolution", NetworkError),
        ("unable to access", NetworkError),
        ("early eof", NetworkError),

        # Push rejected
        ("[rejected]", RejectedError),
        ("non-fast-forward", RejectedError),
        ("fetch first", RejectedError),
        ("failed to push some refs", RejectedError),

        # Nothing in progress to abort
        ("no rebase in progress", NothingToAbortError),
        ("there is no merge to abort", NothingToAbortError),
        ("merge_head missing", NothingToAbortError),
    ]


_CONFLICT_MARKERS = (
    "conflict",
    "could not apply",
    "automatic merge failed",
    "unmerged",
    "needs merge",
    "resolve all conflicts",
)

_ERROR_PATTERNS = build_error_patterns()
_ERROR_STRATEGIES = build_error_strategies()


def _error_text(error: Exception) -> str:
    if isinstance(error, GitCommandError):
        parts = [str(error.stderr or ""), str(error.stdout or "")]
        text = "\n".join(part for part in parts if part)
        return text or str(error)
    return str(error)


def classify_git_error(
    error: Exception,
    operation: str,
    conflict_kind: Optional[Type[SyncError]] = None,
) -> SyncError:
    """
    Translate a git command failure into a typed ``SyncError``.

    Args:
        error: The exception raised by the git backend
        operation: Name of the adapter operation that failed
        conflict_kind: Error type to use when the output reports conflicts
            (``RebaseConflictError`` for rebase, ``MergeConflictError`` for merge)

    Returns:
        SyncError subclass instance carrying the original message
    """
    logger = logging.getLogger('leafsync.git')
    text = _error_text(error)
    lowered = text.lower()

    for pattern, kind in _ERROR_PATTERNS:
        if pattern in lowered:
            logger.debug(f"Classified {operation} failure as {kind.__name__}: pattern '{pattern}'")
            return kind(text.strip(), operation)

    if conflict_kind is not None:
        if any(marker in lowered for marker in _CONFLICT_MARKERS):
            return conflict_kind(text.strip(), operation)

    return GitOperationError(text.strip(), operation)


def get_error_resolution(error: SyncError) -> Optional[ErrorResolution]:
    """Return the resolution guidance for an error, if one is defined."""
    return _ERROR_STRATEGIES.get(error.category)


def describe_error(error: SyncError) -> str:
    """Create a user-facing description with resolution steps."""
    resolution = get_error_resolution(error)
    if resolution is None:
        return f"Sync failed: {error}"

    parts = [resolution.user_message, "", "What you can do:"]
    for i, step in enumerate(resolution.resolution_steps, 1):
        parts.append(f"   {i}. {step}")
    parts.extend(["", f"Details: {error}"])
    return "\n".join(parts)
