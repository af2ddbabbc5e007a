"""MCP server exposing the leafsync commands to a host."""

import logging
import sys
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, load_configuration, validate_configuration
from .context import AppContext
from .credentials import resolve_project_url, strip_credentials
from .errors import SyncError, describe_error
from .git_sync.clone import clone_project as clone_remote_project
from .log_buffer import LogBuffer

LOGGERS = [
    'leafsync.init',
    'leafsync.sync',
    'leafsync.git',
    'leafsync.watcher',
    'leafsync.status',
    'leafsync.conflicts',
    'leafsync.clone',
    'leafsync.gitignore',
    'leafsync.context',
]


def setup_logging(config: Config) -> LogBuffer:
    """
    Configure console logging and attach the in-memory log stream.

    Returns:
        The LogBuffer receiving every ``leafsync`` record
    """
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )

    for logger_name in LOGGERS:
        logging.getLogger(logger_name).setLevel(getattr(logging, config.log_level))

    root = logging.getLogger('leafsync')
    root.setLevel(getattr(logging, config.log_level))
    for handler in root.handlers:
        if isinstance(handler, LogBuffer):
            return handler

    buffer = LogBuffer()
    root.addHandler(buffer)
    return buffer


def _status_payload(context: AppContext) -> dict:
    view = context.status.view
    payload = {
        "state": context.status.state.value,
        "label": view.label,
        "tooltip": view.tooltip,
        "action": view.action,
        "configured": context.configured,
        "reconfigure_required": context.reconfigure_required,
    }
    engine = context.engine
    if engine is not None:
        payload.update({
            "remote": context.repository.display_url,
            "paused": engine.paused,
            "in_flight": engine.in_flight,
            "timer_running": engine.timer_running,
            "consecutive_failures": engine.consecutive_failures,
            "next_delay": engine.next_delay,
        })
    return payload


def _result_payload(result) -> dict:
    return {
        "success": result.success,
        "outcome": result.outcome.value,
        "state": result.state.value,
        "message": result.message,
        "retry_delay": result.retry_delay,
        "conflicted_paths": result.conflicted_paths,
    }


def _not_configured() -> dict:
    return {
        "success": False,
        "state": "not_configured",
        "message": "Sync is not configured. Run configure or clone_project first.",
    }


def register_tools(server: FastMCP, context: AppContext, log_buffer: Optional[LogBuffer] = None) -> None:
    """Register MCP tools with the server instance."""

    @server.tool()
    def sync_now() -> dict:
        """
        Run one sync cycle immediately.

        Fetches the remote, then pulls, pushes, or rebases as needed.  Also
        used to continue after conflicts have been resolved by hand.
        """
        if context.engine is None:
            return _not_configured()
        return _result_payload(context.engine.sync_now())

    @server.tool()
    def pause_sync() -> dict:
        """Pause automatic syncing until resume_sync is called."""
        if context.engine is None:
            return _not_configured()
        context.engine.pause()
        return _status_payload(context)

    @server.tool()
    def resume_sync() -> dict:
        """Resume automatic syncing after a pause or a conflict."""
        if context.engine is None:
            return _not_configured()
        context.engine.resume()
        return _status_payload(context)

    @server.tool()
    def sync_status() -> dict:
        """Report the current sync state and what the user can do next."""
        return _status_payload(context)

    @server.tool()
    def mark_changed(path: str) -> dict:
        """
        Report a saved or changed file in the workspace.

        Saving a .tex or .bib file triggers an immediate sync.

        Args:
            path: Absolute path, or path relative to the workspace
        """
        if context.engine is None:
            return _not_configured()
        result = context.notify_saved(path)
        if result is None:
            return {"success": True, "message": f"Change recorded for {path}", "synced": False}
        payload = _result_payload(result)
        payload["synced"] = True
        return payload

    @server.tool()
    def configure(project: str, token: Optional[str] = None) -> dict:
        """
        Point the workspace at a remote project and start syncing.

        Args:
            project: Project id, web project URL or git URL
            token: Access token (falls back to LEAFSYNC_TOKEN)
        """
        remote_url = resolve_project_url(project, context.config.server_url)
        if remote_url is None:
            return {"success": False, "message": f"Invalid project URL or ID: {project}"}

        if not context.configure(remote_url=remote_url, token=token):
            payload = _status_payload(context)
            payload.update({"success": False, "message": "Sync could not be configured; see show_log"})
            return payload

        result = context.start()
        payload = _status_payload(context)
        payload["success"] = True
        payload["message"] = f"Syncing with {strip_credentials(remote_url)}"
        if result is not None:
            payload["initial_sync"] = _result_payload(result)
        return payload

    @server.tool()
    def clone_project(project: str, destination: str, token: Optional[str] = None) -> dict:
        """
        Clone a remote project into an empty directory.

        Args:
            project: Project id, web project URL or git URL
            destination: Directory to clone into (must be empty or missing)
            token: Access token (falls back to LEAFSYNC_TOKEN)
        """
        remote_url = resolve_project_url(project, context.config.server_url)
        if remote_url is None:
            return {"success": False, "message": f"Invalid project URL or ID: {project}"}

        access_token = token or context.config.token
        if not access_token:
            return {"success": False, "message": "An access token is required to clone"}

        result = clone_remote_project(
            remote_url,
            context.config.username,
            access_token,
            Path(destination).expanduser(),
            context.config.sync.exclude_patterns,
        )
        return {
            "success": result.success,
            "message": result.message,
            "path": str(result.path) if result.path else None,
            "error_code": result.error_code,
        }

    @server.tool()
    def list_conflicts() -> dict:
        """List files with unresolved merge conflicts."""
        if context.repository is None:
            return _not_configured()
        try:
            paths = context.repository.conflicted_files()
        except SyncError as e:
            return {"success": False, "message": describe_error(e)}
        return {"success": True, "conflicted_paths": paths, "state": context.status.state.value}

    @server.tool()
    def abort_conflict() -> dict:
        """Abort the in-progress rebase or merge and resume syncing."""
        if context.engine is None:
            return _not_configured()
        try:
            context.engine.conflict_resolver.abort()
        except SyncError as e:
            return {"success": False, "message": describe_error(e)}
        context.engine.resume()
        payload = _status_payload(context)
        payload["success"] = True
        return payload

    @server.tool()
    def untrack_ignored_files() -> dict:
        """Stop tracking files that match the ignore rules (build artifacts)."""
        if context.engine is None:
            return _not_configured()
        try:
            paths = context.untrack_ignored()
        except SyncError as e:
            return {"success": False, "message": describe_error(e)}
        if not paths:
            return {"success": True, "message": "No tracked build artifacts found", "paths": []}
        return {"success": True, "message": f"{len(paths)} file(s) removed from tracking", "paths": paths}

    @server.tool()
    def show_log(limit: int = 100) -> dict:
        """
        Show recent sync log lines.

        Args:
            limit: Maximum number of lines to return (most recent last)
        """
        if log_buffer is None:
            return {"lines": []}
        return {"lines": log_buffer.lines(limit)}

    @server.tool()
    def logout() -> dict:
        """Forget the access token and stop syncing."""
        context.logout()
        payload = _status_payload(context)
        payload["success"] = True
        return payload

    init_logger = logging.getLogger('leafsync.init')
    init_logger.info("MCP tools registered successfully")


def initialize_server() -> FastMCP:
    """Initialize the MCP server and the sync context."""
    try:
        server_config = load_configuration()
        validation_issues = validate_configuration(server_config)

        log_buffer = setup_logging(server_config)
        init_logger = logging.getLogger('leafsync.init')

        # Missing settings leave the server up in the not-configured state
        for issue in validation_issues:
            if issue.startswith("ERROR:"):
                init_logger.warning(issue[7:])
            elif issue.startswith("WARNING:"):
                init_logger.warning(issue[9:])

        init_logger.info("Configuration loaded successfully")

        context = AppContext(server_config)
        if context.configure():
            context.start()
        else:
            init_logger.info("Sync not started; run configure or clone_project")

        server = FastMCP("leafsync", log_level=server_config.log_level)

        init_logger.info("Registering MCP tools")
        register_tools(server, context, log_buffer)

        init_logger.info("leafsync MCP server initialized successfully")
        return server

    except Exception as e:
        if 'init_logger' not in locals():
            logging.basicConfig(level=logging.ERROR)
            init_logger = logging.getLogger('leafsync.init')

        init_logger.critical(f"Server initialization failed: {e}", exc_info=True)
        raise


def main():
    """Main entry point for the leafsync server with stdio transport."""
    startup_logger = logging.getLogger('leafsync.startup')

    try:
        server = initialize_server()
        startup_logger.info("Starting server with stdio transport")
        server.run(transport="stdio")
    except KeyboardInterrupt:
        startup_logger.info("Server stopped by user (Ctrl+C)")
    except SystemExit:
        raise
    except Exception as e:
        startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
