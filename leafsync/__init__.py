"""
leafsync - keep a local LaTeX workspace in sync with a remote git project.

This package reconciles a working tree with a single-branch remote store and
exposes the sync commands through the Model Context Protocol (MCP).
"""

__version__ = "1.0.0"
__author__ = "leafsync Team"
__description__ = "Background git sync for Overleaf-style projects"

from .server import main

__all__ = ["main"]
