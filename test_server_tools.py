#!/usr/bin/env python3
"""
Tests for the MCP tool surface.

Tools are registered on a minimal stand-in server that records the
decorated functions, so they can be called directly.
"""

import logging
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent))

from git_test_utils import clone, create_upstream
from leafsync.config import Config, SyncConfig
from leafsync.context import AppContext
from leafsync.log_buffer import LogBuffer
from leafsync.server import register_tools, setup_logging

EXPECTED_TOOLS = {
    "sync_now",
    "pause_sync",
    "resume_sync",
    "sync_status",
    "mark_changed",
    "configure",
    "clone_project",
    "list_conflicts",
    "abort_conflict",
    "untrack_ignored_files",
    "show_log",
    "logout",
}


class FakeServer:
    """Collects functions registered with ``@server.tool()``."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(func):
            self.tools[func.__name__] = func
            return func
        return decorator


class TestServerTools(unittest.TestCase):
    """Test cases for the registered MCP tools."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.upstream = create_upstream(self.temp_dir)
        self.repo = clone(self.upstream, self.temp_dir / "paper")
        self.workspace = Path(self.repo.working_tree_dir)

        self.config = Config(
            workspace_dir=self.workspace,
            token="olp_token",
            sync=SyncConfig(enabled=False, pull_on_open=False),
        )
        self.context = AppContext(self.config)
        self.log_buffer = LogBuffer()
        self.server = FakeServer()
        register_tools(self.server, self.context, self.log_buffer)
        self.tools = self.server.tools

    def tearDown(self):
        self.context.dispose()
        self.repo.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _configure(self):
        with patch("leafsync.server.resolve_project_url", return_value=str(self.upstream)):
            return self.tools["configure"]("64a1b2c3d4e5f60718293a4b")

    def test_all_tools_registered(self):
        self.assertEqual(set(self.tools), EXPECTED_TOOLS)

    def test_commands_before_configuration(self):
        self.assertEqual(self.tools["sync_status"]()["state"], "not_configured")
        for name in ("sync_now", "pause_sync", "resume_sync", "abort_conflict", "list_conflicts"):
            with self.subTest(tool=name):
                self.assertFalse(self.tools[name]()["success"])

    def test_configure_rejects_invalid_project(self):
        result = self.tools["configure"]("definitely not a project")

        self.assertFalse(result["success"])
        self.assertIn("Invalid project", result["message"])

    def test_configure_and_sync(self):
        result = self._configure()

        self.assertTrue(result["success"], result)
        self.assertTrue(result["configured"])
        self.assertEqual(result["remote"], str(self.upstream))

        sync = self.tools["sync_now"]()

        self.assertTrue(sync["success"], sync)
        self.assertEqual(sync["state"], "idle")

    def test_status_never_exposes_token(self):
        self._configure()

        status = self.tools["sync_status"]()

        self.assertNotIn("olp_token", repr(status))

    def test_pause_and_resume(self):
        self._configure()

        self.assertEqual(self.tools["pause_sync"]()["state"], "disabled")
        self.assertEqual(self.tools["sync_now"]()["outcome"], "skipped")
        self.assertEqual(self.tools["resume_sync"]()["state"], "idle")

    def test_mark_changed(self):
        self._configure()
        (self.workspace / "main.tex").write_text("\\documentclass{article}\nEdited\n")

        result = self.tools["mark_changed"](str(self.workspace / "main.tex"))

        self.assertTrue(result["synced"])
        self.assertEqual(result["outcome"], "pushed")

    def test_list_and_abort_without_conflict(self):
        self._configure()

        listed = self.tools["list_conflicts"]()
        self.assertTrue(listed["success"])
        self.assertEqual(listed["conflicted_paths"], [])

        aborted = self.tools["abort_conflict"]()
        self.assertTrue(aborted["success"])
        self.assertTrue(self.tools["sync_now"]()["success"])

    def test_untrack_ignored_files(self):
        self._configure()

        result = self.tools["untrack_ignored_files"]()

        self.assertTrue(result["success"])
        self.assertEqual(result["paths"], [])

    def test_clone_project_tool(self):
        destination = self.temp_dir / "cloned"
        with patch("leafsync.server.resolve_project_url", return_value=str(self.upstream)):
            result = self.tools["clone_project"]("64a1b2c3d4e5f60718293a4b", str(destination))

        self.assertTrue(result["success"], result)
        self.assertTrue((destination / "main.tex").exists())

    def test_clone_project_requires_token(self):
        self.config.token = None

        result = self.tools["clone_project"]("64a1b2c3d4e5f60718293a4b", str(self.temp_dir / "cloned"))

        self.assertFalse(result["success"])

    def test_show_log(self):
        logger = logging.getLogger("leafsync.test_server_tools")
        logger.addHandler(self.log_buffer)
        try:
            logger.warning("Merge conflict detected")
        finally:
            logger.removeHandler(self.log_buffer)

        lines = self.tools["show_log"](limit=10)["lines"]

        self.assertTrue(lines[-1].endswith("[WARNING] Merge conflict detected"))

    def test_logout(self):
        self._configure()

        result = self.tools["logout"]()

        self.assertTrue(result["success"])
        self.assertEqual(result["state"], "not_configured")
        self.assertIsNone(self.config.token)
        self.assertFalse(self.tools["sync_now"]()["success"])


class TestSetupLogging(unittest.TestCase):

    def test_attaches_single_log_buffer(self):
        config = Config(log_level="DEBUG")
        root = logging.getLogger("leafsync")
        try:
            first = setup_logging(config)
            second = setup_logging(config)

            self.assertIs(first, second)
            self.assertEqual(sum(isinstance(h, LogBuffer) for h in root.handlers), 1)

            logging.getLogger("leafsync.sync").info("Pull complete")
            self.assertTrue(first.lines()[-1].endswith("[INFO] Pull complete"))
        finally:
            for handler in list(root.handlers):
                if isinstance(handler, LogBuffer):
                    root.removeHandler(handler)


if __name__ == "__main__":
    unittest.main(verbosity=2)
