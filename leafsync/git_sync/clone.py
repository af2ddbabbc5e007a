"""Project cloning and local configuration for leafsync."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from git import Repo, GitCommandError

from ..config import MARKER_FILENAME
from ..credentials import build_authenticated_url, redact_credentials, strip_credentials
from ..errors import classify_git_error, describe_error
from .gitignore import ensure_gitignore

DEFAULT_USER_NAME = "leafsync"
DEFAULT_USER_EMAIL = "leafsync@localhost"


@dataclass
class CloneResult:
    """Result of a clone operation."""
    success: bool
    message: str
    path: Optional[Path] = None
    error_code: Optional[str] = None


def write_marker(workspace_dir: Path, remote_url: str) -> Path:
    """Write the project marker recording the (credential-free) remote URL."""
    marker_path = Path(workspace_dir) / MARKER_FILENAME
    marker_path.write_text(
        json.dumps({"projectUrl": strip_credentials(remote_url), "configured": True}, indent=2),
        encoding="utf-8",
    )
    return marker_path


def read_marker(workspace_dir: Path) -> Optional[dict]:
    """Read the project marker, or None when absent or unreadable."""
    marker_path = Path(workspace_dir) / MARKER_FILENAME
    if not marker_path.exists():
        return None
    try:
        return json.loads(marker_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logging.getLogger('leafsync.clone').warning(f"Unreadable project marker {marker_path}: {e}")
        return None


def ensure_identity(repo: Repo) -> None:
    """Give the repository a committer identity if none is configured."""
    with repo.config_reader() as reader:
        user_name = reader.get_value("user", "name", default="")
        user_email = reader.get_value("user", "email", default="")

    if user_name and user_email:
        return

    with repo.config_writer() as writer:
        if not user_name:
            writer.set_value("user", "name", DEFAULT_USER_NAME)
        if not user_email:
            writer.set_value("user", "email", DEFAULT_USER_EMAIL)


def clone_project(
    remote_url: str,
    username: str,
    token: str,
    destination: Path,
    exclude_patterns: Iterable[str] = (),
) -> CloneResult:
    """
    Clone a remote project and prepare it for syncing.

    This function performs the following operations:
    1. Refuses to clone into a non-empty directory
    2. Clones with the authenticated URL
    3. Rewrites ``origin`` to the credential-free URL
    4. Writes the project marker and bootstraps ``.gitignore``

    Args:
        remote_url: Remote repository URL without credentials
        username: Username for the remote
        token: Access token for the remote
        destination: Directory to clone into
        exclude_patterns: Build artifact patterns to ignore

    Returns:
        CloneResult indicating success or failure
    """
    logger = logging.getLogger('leafsync.clone')
    destination = Path(destination)
    display_url = strip_credentials(remote_url)

    if destination.exists() and any(destination.iterdir()):
        error_msg = f"Cannot clone: destination is not empty: {destination}"
        logger.error(error_msg)
        return CloneResult(success=False, message=error_msg, error_code="DESTINATION_NOT_EMPTY")

    destination.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Cloning {display_url} into {destination}")

    try:
        repo = Repo.clone_from(build_authenticated_url(remote_url, username, token), destination)
    except GitCommandError as e:
        error = classify_git_error(e, "clone")
        logger.error(f"Clone failed: {type(error).__name__}")
        return CloneResult(
            success=False,
            message=redact_credentials(f"Clone failed - {describe_error(error)}"),
            error_code=error.category.value.upper(),
        )

    try:
        # Keep the token out of .git/config
        repo.remote("origin").set_url(display_url)
        ensure_identity(repo)
    finally:
        repo.close()

    write_marker(destination, remote_url)
    ensure_gitignore(destination, exclude_patterns)

    logger.info(f"Project cloned successfully from {display_url}")
    return CloneResult(success=True, message=f"Project cloned from {display_url}", path=destination)
