"""Slash command for managing the Tether API server."""

from __future__ import annotations

from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ..api import APIKeyManager, APIServerState, TetherAPIServer
from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    render_rich,
)

# One server per process, created on first use.
_api_server: Optional[TetherAPIServer] = None


def _get_server(context: SlashCommandContext) -> TetherAPIServer:
    global _api_server

    if _api_server is None:
        _api_server = TetherAPIServer(config_bundle=context.config, engine=context.engine)
    return _api_server


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Manage the Tether API server."""

    if not args:
        return _show_status(context)

    subcommand = args[0].lower()

    if subcommand == "start":
        return _start_server(context)
    elif subcommand == "stop":
        return _stop_server()
    elif subcommand == "status":
        return _show_status(context)
    elif subcommand == "key":
        return _issue_key(context, args[1:])
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[api] Unknown subcommand '{subcommand}'. Use /api help for usage."


def _start_server(context: SlashCommandContext) -> str:
    server = _get_server(context)

    if server.state is APIServerState.RUNNING:
        return f"[api] Server is already running at http://{server.host}:{server.port}"

    if server.start(blocking=False):
        return (
            f"[api] Server started at http://{server.host}:{server.port}\n"
            "Issue a key with /api key <user>; use /api status to check server state"
        )
    return f"[api] Failed to start server (state: {server.state.value})"


def _stop_server() -> str:
    if _api_server is None:
        return "[api] Server is not running"

    if _api_server.state is not APIServerState.RUNNING:
        return f"[api] Server is not running (state: {_api_server.state.value})"

    if _api_server.stop():
        return "[api] Server stopped"
    return f"[api] Failed to stop server (state: {_api_server.state.value})"


def _show_status(context: SlashCommandContext) -> str:
    """Show API server status."""
    api_config = context.config.section("api")
    key_counts = APIKeyManager(context.config.data_dir).users()

    def _render(console: Console) -> None:
        table = Table(title="API Server Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        if _api_server is None:
            table.add_row("State", "not initialized")
            table.add_row("URL", "-")
        else:
            status = _api_server.status()
            table.add_row("State", status["state"])
            table.add_row("URL", status["url"] or "-")

        table.add_row("", "")
        table.add_row("Config: host", str(api_config.get("host", "127.0.0.1")))
        table.add_row("Config: port", str(api_config.get("port", 8000)))
        table.add_row("Users with keys", str(len(key_counts)))

        console.print(table)

    return render_rich(_render)


def _issue_key(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return "[api] Usage: /api key <user> [revoke]"

    manager = APIKeyManager(context.config.data_dir)
    user_id = args[0]
    if len(args) > 1 and args[1].lower() == "revoke":
        if manager.revoke(user_id):
            return f"[api] Revoked API key for '{user_id}'"
        return f"[api] No API key on record for '{user_id}'"

    key = manager.issue_key(user_id)
    return f"[api] API key for '{user_id}': {key}\nStore it now; it is not shown again."


def _show_help() -> str:
    """Show API command help."""
    return """[api] Usage:
  /api                    Show server status
  /api start              Start the API server
  /api stop               Stop the API server
  /api status             Show server status
  /api key <user>         Issue a new API key for a user
  /api key <user> revoke  Revoke a user's API key
  /api help               Show this help

API Endpoints (when running):
  GET    /health                                  Health check
  POST   /api/v1/sync/operations                  Enqueue an operation
  GET    /api/v1/sync/operations                  List operations
  DELETE /api/v1/sync/operations                  Clear pending operations
  POST   /api/v1/sync/operations/batch            Enqueue a batch
  POST   /api/v1/sync/process                     Process the queue
  GET    /api/v1/sync/status                      Queue status
  POST   /api/v1/sync/conflicts/detect            Check a document version
  GET    /api/v1/sync/conflicts                   List open conflicts
  POST   /api/v1/sync/conflicts/{id}/resolve      Resolve a conflict
  GET    /api/v1/sync/resolutions                 Resolution history

Authentication:
  Include X-API-Key header or ?api_key= query param"""


COMMAND = SlashCommand(
    name="api",
    description="Manage the Tether API server. Usage: /api [start|stop|status|key|help]",
    handler=_handler,
)
