"""Ignore-file bootstrapping for build artifacts."""

import logging
from pathlib import Path
from typing import Iterable, List

from git import Repo, GitCommandError

from ..config import MARKER_FILENAME
from ..errors import classify_git_error

SECTION_HEADER = "# leafsync"
UNTRACK_COMMIT_MESSAGE = "Remove tracked build artifacts via leafsync"


def ensure_gitignore(workspace_dir: Path, patterns: Iterable[str]) -> List[str]:
    """
    Make sure ``.gitignore`` lists the marker file and every exclude pattern.

    Creates the file when missing, otherwise appends the missing patterns
    under a ``# leafsync`` section header.

    Returns:
        The patterns that were added
    """
    logger = logging.getLogger('leafsync.gitignore')
    gitignore_path = Path(workspace_dir) / ".gitignore"
    all_patterns = [MARKER_FILENAME] + [p for p in patterns if p != MARKER_FILENAME]

    if not gitignore_path.exists():
        gitignore_path.write_text(SECTION_HEADER + "\n" + "\n".join(all_patterns) + "\n", encoding="utf-8")
        logger.info(f"Created .gitignore with {len(all_patterns)} pattern(s)")
        return all_patterns

    existing = gitignore_path.read_text(encoding="utf-8")
    existing_lines = {
        line.strip()
        for line in existing.splitlines()
        if line.strip() and not line.strip().startswith("#")
    }
    missing = []
    for pattern in all_patterns:
        if pattern not in existing_lines and pattern not in missing:
            missing.append(pattern)

    if missing:
        separator = "" if existing.endswith("\n") or not existing else "\n"
        addition = f"{separator}\n{SECTION_HEADER}\n" + "\n".join(missing) + "\n"
        with gitignore_path.open("a", encoding="utf-8") as f:
            f.write(addition)
        logger.info(f"Added {len(missing)} pattern(s) to .gitignore")

    return missing


def find_tracked_ignored(workspace_dir: Path) -> List[str]:
    """List tracked files that match the ignore rules."""
    repo = Repo(workspace_dir)
    try:
        output = repo.git.ls_files("-i", "-c", "--exclude-standard")
    except GitCommandError as e:
        raise classify_git_error(e, "find_tracked_ignored") from None
    finally:
        repo.close()
    return [line for line in output.splitlines() if line]


def untrack_files(workspace_dir: Path, paths: List[str]) -> None:
    """Remove files from the index (keeping them on disk) and commit."""
    if not paths:
        return
    logger = logging.getLogger('leafsync.gitignore')
    repo = Repo(workspace_dir)
    try:
        repo.git.rm("--cached", "--", *paths)
        repo.git.add(".gitignore")
        repo.git.commit("-m", UNTRACK_COMMIT_MESSAGE)
        logger.info(f"{len(paths)} file(s) removed from tracking")
    except GitCommandError as e:
        raise classify_git_error(e, "untrack_files") from None
    finally:
        repo.close()
