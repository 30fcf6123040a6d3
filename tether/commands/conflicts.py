"""Slash command for reviewing and resolving sync conflicts."""

from __future__ import annotations

import json
from typing import List

from rich.console import Console
from rich.table import Table

from ..errors import SyncError
from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    render_rich,
)


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Review and resolve conflicts for one user."""

    if not args or args[0].lower() == "help":
        return _show_help()

    subcommand = args[0].lower()
    if len(args) < 2:
        return f"[conflicts] '/conflicts {subcommand}' needs a user id."
    user_id = args[1]

    try:
        if subcommand == "list":
            return _list_conflicts(context, user_id)
        elif subcommand == "resolve":
            return _resolve(context, user_id, args[2:])
        elif subcommand == "history":
            return _show_history(context, user_id)
        else:
            return f"[conflicts] Unknown subcommand '{subcommand}'. Use /conflicts help for usage."
    except SyncError as exc:
        return f"[conflicts] {exc.message}"


def _list_conflicts(context: SlashCommandContext, user_id: str) -> str:
    conflicts = context.engine.list_conflicts(user_id)
    if not conflicts:
        return f"[conflicts] No open conflicts for '{user_id}'."

    def _render(console: Console) -> None:
        table = Table(title=f"Open Conflicts: {user_id}", show_header=True, header_style="bold yellow")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Document")
        table.add_column("Client", justify="right")
        table.add_column("Server", justify="right")
        table.add_column("Detected")
        for conflict in conflicts:
            table.add_row(
                conflict.id,
                f"{conflict.collection}/{conflict.document_id}",
                f"v{conflict.client_version}",
                f"v{conflict.server_version}",
                conflict.detected_at,
            )
        console.print(table)

    return render_rich(_render)


def _resolve(context: SlashCommandContext, user_id: str, args: List[str]) -> str:
    if not args:
        return "[conflicts] Usage: /conflicts resolve <user> <conflict_id> [strategy] [json]"

    conflict_id = args[0]
    strategy = args[1] if len(args) > 1 else None
    resolved_data = None
    if len(args) > 2:
        try:
            resolved_data = json.loads(" ".join(args[2:]))
        except json.JSONDecodeError as exc:
            return f"[conflicts] Resolved data is not valid JSON: {exc}"

    resolution = context.engine.resolve_conflict(user_id, conflict_id, strategy, resolved_data)
    return (
        f"[conflicts] Resolved {conflict_id} with {resolution.strategy.value}; "
        f"resolution id {resolution.id}."
    )


def _show_history(context: SlashCommandContext, user_id: str) -> str:
    history = context.engine.conflict_history(user_id)
    stats = context.engine.conflict_stats(user_id)

    def _render(console: Console) -> None:
        table = Table(title=f"Resolutions: {user_id}", show_header=True, header_style="bold cyan")
        table.add_column("Resolved")
        table.add_column("Conflict", style="dim", max_width=12)
        table.add_column("Strategy")
        for resolution in history:
            table.add_row(
                resolution.resolved_at,
                resolution.conflict_id[:12],
                resolution.strategy.value,
            )
        console.print(table)

        by_strategy = ", ".join(
            f"{name}={count}" for name, count in sorted(stats["by_strategy"].items())
        )
        console.print(
            f"open: {stats['open']}  resolved: {stats['resolved']}"
            + (f"  ({by_strategy})" if by_strategy else "")
        )

    return render_rich(_render)


def _show_help() -> str:
    """Show conflicts command help."""
    return """[conflicts] Usage:
  /conflicts list <user>                                  List open conflicts
  /conflicts resolve <user> <conflict_id> [strategy] [json]
                                                          Resolve a conflict
  /conflicts history <user>                               Show resolutions and stats
  /conflicts help                                         Show this help

Strategies: CLIENT_WINS, SERVER_WINS, MERGE, MANUAL (MANUAL needs JSON data).
Without a strategy the one declared on the queued operation is used."""


COMMAND = SlashCommand(
    name="conflicts",
    description="Review and resolve sync conflicts. Usage: /conflicts [list|resolve|history] <user>",
    handler=_handler,
    requires_ready=True,
)
