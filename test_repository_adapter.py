#!/usr/bin/env python3
"""
Integration tests for the repository adapter.

Each test builds a bare upstream and one or two clones in a temporary
directory and drives them through the adapter with real git commands.
"""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import git

sys.path.insert(0, str(Path(__file__).parent))

from git_test_utils import clone, commit_file, create_upstream, push
from leafsync.errors import (
    GitOperationError,
    MergeConflictError,
    NetworkError,
    NotARepositoryError,
    NothingToAbortError,
    RebaseConflictError,
    RejectedError,
)
from leafsync.git_sync.repository import RepositoryAdapter, parse_porcelain_status


class TestParsePorcelainStatus(unittest.TestCase):

    def test_branch_headers(self):
        output = "\0".join([
            "# branch.oid 1234",
            "# branch.head main",
            "# branch.upstream origin/main",
            "# branch.ab +2 -3",
            "",
        ])
        snapshot = parse_porcelain_status(output)

        self.assertEqual(snapshot.branch, "main")
        self.assertEqual(snapshot.upstream, "origin/main")
        self.assertEqual(snapshot.ahead_count, 2)
        self.assertEqual(snapshot.behind_count, 3)
        self.assertFalse(snapshot.working_tree_dirty)
        self.assertTrue(snapshot.tracking_known)

    def test_changes_and_conflicts(self):
        output = "\0".join([
            "# branch.head main",
            "1 .M N... 100644 100644 100644 abc abc main.tex",
            "2 R. N... 100644 100644 100644 abc abc R100 new name.tex",
            "old name.tex",
            "u UU N... 100644 100644 100644 100644 a b c chapters/intro file.tex",
            "? notes.txt",
            "",
        ])
        snapshot = parse_porcelain_status(output)

        self.assertTrue(snapshot.working_tree_dirty)
        self.assertEqual(snapshot.conflicted_paths, ["chapters/intro file.tex"])
        self.assertFalse(snapshot.tracking_known)

    def test_detached_head(self):
        snapshot = parse_porcelain_status("# branch.head (detached)\0")
        self.assertIsNone(snapshot.branch)


class TestRepositoryAdapter(unittest.TestCase):
    """Test cases driving git primitives against real repositories."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.upstream = create_upstream(self.temp_dir)
        self.repo_a = clone(self.upstream, self.temp_dir / "clone_a")
        self.repo_b = clone(self.upstream, self.temp_dir / "clone_b")
        self.workspace = Path(self.repo_a.working_tree_dir)
        self.adapter = RepositoryAdapter(self.workspace, str(self.upstream), "git", "olp_secret")

    def tearDown(self):
        self.adapter.close()
        self.repo_a.close()
        self.repo_b.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _push_from_b(self, name="main.tex", content="\\documentclass{article}\nFrom B\n"):
        commit_file(self.repo_b, name, content, "edit from B")
        push(self.repo_b)

    def test_is_repository(self):
        self.assertTrue(self.adapter.is_repository())

        empty = self.temp_dir / "empty"
        empty.mkdir()
        self.assertFalse(RepositoryAdapter(empty, str(self.upstream), "git", "t").is_repository())
        self.assertFalse(RepositoryAdapter(self.temp_dir / "missing", str(self.upstream), "git", "t").is_repository())

    def test_commands_on_non_repository_raise(self):
        empty = self.temp_dir / "empty"
        empty.mkdir()
        adapter = RepositoryAdapter(empty, str(self.upstream), "git", "t")
        with self.assertRaises(NotARepositoryError):
            adapter.status()

    def test_branch_name_prefers_main(self):
        self.assertEqual(self.adapter.branch_name(), "main")

    def test_branch_name_falls_back_to_master(self):
        other_root = self.temp_dir / "other"
        other_root.mkdir()
        upstream = create_upstream(other_root, branch="master")
        repo = clone(upstream, other_root / "clone")
        adapter = RepositoryAdapter(Path(repo.working_tree_dir), str(upstream), "git", "t")
        try:
            self.assertEqual(adapter.branch_name(), "master")
        finally:
            adapter.close()
            repo.close()

    def test_branch_name_is_resolved_once(self):
        """A renamed remote branch is not noticed within the adapter's lifetime."""
        self.assertEqual(self.adapter.branch_name(), "main")

        upstream = git.Repo(str(self.upstream))
        try:
            upstream.git.branch("-m", "main", "master")
        finally:
            upstream.close()

        self.assertEqual(self.adapter.branch_name(), "main")
        fresh = RepositoryAdapter(self.workspace, str(self.upstream), "git", "t")
        try:
            self.assertEqual(fresh.branch_name(), "master")
        finally:
            fresh.close()

    def test_clean_status(self):
        self.adapter.fetch()
        snapshot = self.adapter.status()

        self.assertEqual(snapshot.branch, "main")
        self.assertEqual(snapshot.ahead_count, 0)
        self.assertEqual(snapshot.behind_count, 0)
        self.assertFalse(snapshot.working_tree_dirty)
        self.assertFalse(snapshot.merge_in_progress)
        self.assertFalse(self.adapter.has_remote_changes())

    def test_fetch_reports_behind_and_fast_forward(self):
        self._push_from_b()

        self.adapter.fetch()
        snapshot = self.adapter.status()
        self.assertEqual(snapshot.behind_count, 1)
        self.assertTrue(self.adapter.has_remote_changes())

        self.adapter.pull_fast_forward()

        self.assertIn("From B", (self.workspace / "main.tex").read_text())
        self.assertEqual(self.adapter.status().behind_count, 0)

    def test_commit_all_and_push(self):
        (self.workspace / "chapter.tex").write_text("New chapter\n")
        (self.workspace / "main.tex").unlink()
        self.assertTrue(self.adapter.status().working_tree_dirty)

        self.adapter.commit_all("leafsync auto-sync [2024-01-01 00:00:00]")
        self.assertFalse(self.adapter.status().working_tree_dirty)
        self.adapter.push()

        self.repo_b.git.pull("origin", "main")
        b_tree = Path(self.repo_b.working_tree_dir)
        self.assertTrue((b_tree / "chapter.tex").exists())
        self.assertFalse((b_tree / "main.tex").exists())
        self.assertEqual(self.repo_b.head.commit.message.strip(), "leafsync auto-sync [2024-01-01 00:00:00]")

    def test_commit_clean_tree_fails(self):
        with self.assertRaises(GitOperationError):
            self.adapter.commit_all("nothing here")

    def test_push_rejected_when_remote_advanced(self):
        self._push_from_b()
        commit_file(self.repo_a, "notes.tex", "local\n")

        with self.assertRaises(RejectedError):
            self.adapter.push()

    def test_rebase_integrates_disjoint_changes(self):
        self._push_from_b()
        commit_file(self.repo_a, "notes.tex", "local\n")

        self.adapter.fetch()
        self.adapter.pull_rebase()
        self.adapter.push()

        self.assertIn("From B", (self.workspace / "main.tex").read_text())
        self.adapter.fetch()
        self.assertEqual(self.adapter.status().ahead_count, 0)

    def test_rebase_conflict_and_abort(self):
        self._push_from_b()
        commit_file(self.repo_a, "main.tex", "\\documentclass{article}\nFrom A\n")
        self.adapter.fetch()

        with self.assertRaises(RebaseConflictError):
            self.adapter.pull_rebase()

        self.assertEqual(self.adapter.conflicted_files(), ["main.tex"])

        self.adapter.abort_rebase()

        self.assertEqual(self.adapter.conflicted_files(), [])
        self.assertIn("From A", (self.workspace / "main.tex").read_text())
        with self.assertRaises(NothingToAbortError):
            self.adapter.abort_rebase()

    def test_merge_conflict_and_abort(self):
        self._push_from_b()
        commit_file(self.repo_a, "main.tex", "\\documentclass{article}\nFrom A\n")
        self.adapter.fetch()

        with self.assertRaises(MergeConflictError):
            self.adapter.pull_merge()

        self.assertEqual(self.adapter.status().conflicted_paths, ["main.tex"])

        self.adapter.abort_merge()

        self.assertEqual(self.adapter.conflicted_files(), [])
        with self.assertRaises(NothingToAbortError):
            self.adapter.abort_merge()

    def test_merge_resolved_to_head_is_still_in_progress(self):
        self._push_from_b()
        commit_file(self.repo_a, "main.tex", "\\documentclass{article}\nFrom A\n")
        self.adapter.fetch()
        with self.assertRaises(MergeConflictError):
            self.adapter.pull_merge()

        self.repo_a.git.checkout("--ours", "main.tex")
        self.repo_a.git.add("main.tex")
        snapshot = self.adapter.status()

        self.assertTrue(snapshot.merge_in_progress)
        self.assertFalse(snapshot.working_tree_dirty)
        self.assertEqual(snapshot.conflicted_paths, [])

        self.adapter.commit_all("leafsync auto-sync [2024-01-01 00:00:00]")
        self.adapter.push()

        self.assertFalse(self.adapter.status().merge_in_progress)
        self.assertIn("From A", (self.workspace / "main.tex").read_text())

    def test_merge_integrates_disjoint_changes(self):
        self._push_from_b()
        commit_file(self.repo_a, "notes.tex", "local\n")
        self.adapter.fetch()

        self.adapter.pull_merge()

        self.assertIn("From B", (self.workspace / "main.tex").read_text())
        self.assertTrue((self.workspace / "notes.tex").exists())

    def test_token_not_written_to_config(self):
        self.adapter.fetch()
        config_text = (self.workspace / ".git" / "config").read_text()
        self.assertNotIn("olp_secret", config_text)


class TestRemoteCredentials(unittest.TestCase):
    """Test cases for credential handling against an unreachable remote."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        upstream = create_upstream(self.temp_dir)
        self.repo = clone(upstream, self.temp_dir / "clone")
        self.adapter = RepositoryAdapter(
            Path(self.repo.working_tree_dir),
            "https://127.0.0.1:1/64a1b2c3d4e5f60718293a4b",
            "git",
            "olp_secret",
        )

    def tearDown(self):
        self.adapter.close()
        self.repo.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_display_url_has_no_token(self):
        self.assertEqual(self.adapter.display_url, "https://127.0.0.1:1/64a1b2c3d4e5f60718293a4b")

    def test_unreachable_remote_is_network_error_without_token(self):
        with patch.dict(os.environ, {"GIT_TERMINAL_PROMPT": "0"}):
            with self.assertRaises(NetworkError) as ctx:
                self.adapter.fetch()

        self.assertNotIn("olp_secret", str(ctx.exception))
        self.assertIsNone(ctx.exception.__cause__)


if __name__ == "__main__":
    unittest.main(verbosity=2)
