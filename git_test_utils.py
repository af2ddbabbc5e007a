"""Helpers building throwaway git repositories for the test suite."""

from pathlib import Path
from typing import Dict, Optional

import git

TEST_AUTHOR = "Test Author"
TEST_EMAIL = "test@example.com"


def configure_identity(repo: git.Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", TEST_AUTHOR)
        writer.set_value("user", "email", TEST_EMAIL)


def create_upstream(root: Path, branch: str = "main", files: Optional[Dict[str, str]] = None) -> Path:
    """
    Create a bare upstream repository with one initial commit.

    A non-bare seed repository is committed to and then cloned bare, so the
    upstream has a real default branch.
    """
    seed = root / "seed"
    seed_repo = git.Repo.init(seed)
    seed_repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
    configure_identity(seed_repo)

    files = files or {"main.tex": "\\documentclass{article}\nHello\n"}
    for name, content in files.items():
        path = seed / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    seed_repo.git.add("-A")
    seed_repo.git.commit("-m", "initial")
    seed_repo.close()

    upstream = root / "upstream.git"
    git.Repo.clone_from(str(seed), str(upstream), bare=True).close()
    return upstream


def clone(upstream: Path, destination: Path) -> git.Repo:
    repo = git.Repo.clone_from(str(upstream), str(destination))
    configure_identity(repo)
    return repo


def commit_file(repo: git.Repo, name: str, content: str, message: str = "edit") -> None:
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    repo.git.add("-A")
    repo.git.commit("-m", message)


def push(repo: git.Repo) -> None:
    repo.git.push("origin", "HEAD")
