"""Configuration management for leafsync."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Tuple

from dotenv import load_dotenv

load_dotenv()  # Load .env file if it exists

DEFAULT_EXCLUDE_PATTERNS: Tuple[str, ...] = (
    "*.aux",
    "*.log",
    "*.synctex.gz",
    "*.fls",
    "*.fdb_latexmk",
    "*.bbl",
    "*.blg",
    "*.out",
    "*.toc",
)

DEFAULT_SERVER_URL = "https://git.overleaf.com"
DEFAULT_COMMIT_MESSAGE = "leafsync auto-sync"
MARKER_FILENAME = ".leafsync"


@dataclass(frozen=True)
class SyncConfig:
    """Sync settings for one activation. A change requires restarting the engine."""

    enabled: bool = True
    interval_seconds: float = 10.0
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    pull_on_open: bool = True
    push_on_save: bool = False
    exclude_patterns: Tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if not self.commit_message.strip():
            raise ValueError("commit_message must not be empty")
        # Accept any iterable of patterns but keep the stored value immutable
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))


@dataclass
class Config:
    """Configuration class for leafsync with validation and defaults."""

    # Workspace
    workspace_dir: Optional[Path] = None

    # Remote
    remote_url: Optional[str] = None
    username: str = "git"
    token: Optional[str] = field(default=None, repr=False)
    server_url: str = DEFAULT_SERVER_URL

    # Sync
    sync: SyncConfig = field(default_factory=SyncConfig)

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.workspace_dir, str):
            self.workspace_dir = Path(self.workspace_dir)

        if self.workspace_dir is not None:
            self.workspace_dir = self.workspace_dir.expanduser().resolve()

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")
        self.log_level = self.log_level.upper()

    @property
    def is_configured(self) -> bool:
        """Whether a workspace, a remote and a token are all present."""
        return bool(self.workspace_dir and self.remote_url and self.token)

    @property
    def marker_path(self) -> Optional[Path]:
        """Project marker written by the clone workflow."""
        if self.workspace_dir is None:
            return None
        return self.workspace_dir / MARKER_FILENAME


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")


def _env_patterns(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return DEFAULT_EXCLUDE_PATTERNS
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def load_configuration() -> Config:
    """Load configuration from environment variables."""
    try:
        workspace = os.getenv("LEAFSYNC_WORKSPACE")

        sync = SyncConfig(
            enabled=_env_bool("LEAFSYNC_SYNC_ENABLED", True),
            interval_seconds=float(os.getenv("LEAFSYNC_SYNC_INTERVAL", "10")),
            commit_message=os.getenv("LEAFSYNC_COMMIT_MESSAGE", DEFAULT_COMMIT_MESSAGE),
            pull_on_open=_env_bool("LEAFSYNC_PULL_ON_OPEN", True),
            push_on_save=_env_bool("LEAFSYNC_PUSH_ON_SAVE", False),
            exclude_patterns=_env_patterns("LEAFSYNC_EXCLUDE_PATTERNS"),
        )

        return Config(
            workspace_dir=Path(workspace) if workspace else None,
            remote_url=os.getenv("LEAFSYNC_REMOTE_URL") or None,
            username=os.getenv("LEAFSYNC_USERNAME", "git"),
            token=os.getenv("LEAFSYNC_TOKEN") or None,
            server_url=os.getenv("LEAFSYNC_SERVER_URL", DEFAULT_SERVER_URL),
            sync=sync,
            log_level=os.getenv("LEAFSYNC_LOG_LEVEL", "INFO").upper(),
        )
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    errors = []

    if config.workspace_dir is None:
        errors.append("ERROR: No workspace configured (set LEAFSYNC_WORKSPACE)")
    elif not config.workspace_dir.exists():
        errors.append(f"ERROR: Workspace directory does not exist: {config.workspace_dir}")
    elif not (config.workspace_dir / ".git").exists():
        errors.append(f"WARNING: Workspace is not a git repository yet: {config.workspace_dir}")

    if not config.remote_url:
        errors.append("ERROR: No remote URL configured (set LEAFSYNC_REMOTE_URL)")
    elif not config.remote_url.startswith(("http://", "https://", "file://", "/")):
        errors.append(f"WARNING: Remote URL may be invalid: {config.remote_url}")

    if not config.token:
        errors.append("ERROR: No access token configured (set LEAFSYNC_TOKEN)")

    if config.sync.interval_seconds < 5:
        errors.append("WARNING: Sync interval below 5 seconds may hit remote rate limits")

    if config.remote_url and "@" in config.remote_url.split("//", 1)[-1].split("/", 1)[0]:
        logging.getLogger('leafsync.config').warning(
            "Remote URL contains embedded credentials; use LEAFSYNC_TOKEN instead"
        )
        errors.append("WARNING: Remote URL contains embedded credentials")

    return errors
