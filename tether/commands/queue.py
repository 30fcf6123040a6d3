"""Slash command for inspecting and draining a user's sync queue."""

from __future__ import annotations

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
    """Manage the sync queue of one user."""

    if not args or args[0].lower() == "help":
        return _show_help()

    subcommand = args[0].lower()
    if len(args) < 2:
        return f"[queue] '/queue {subcommand}' needs a user id. Use /queue help for usage."
    user_id = args[1]

    try:
        if subcommand == "status":
            return _show_status(context, user_id)
        elif subcommand == "list":
            return _list_operations(context, user_id, args[2] if len(args) > 2 else None)
        elif subcommand == "process":
            return _process(context, user_id)
        elif subcommand == "clear":
            removed = context.engine.clear_queue(user_id)
            return f"[queue] Removed {removed} pending operation(s) for '{user_id}'."
        else:
            return f"[queue] Unknown subcommand '{subcommand}'. Use /queue help for usage."
    except SyncError as exc:
        return f"[queue] {exc.message}"


def _show_status(context: SlashCommandContext, user_id: str) -> str:
    status = context.engine.status(user_id)
    state = context.engine.sync_state(user_id)

    def _render(console: Console) -> None:
        table = Table(title=f"Sync Queue: {user_id}", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("Pending", str(status.pending))
        table.add_row("In progress", str(status.in_progress))
        table.add_row("Failed", str(status.failed))
        table.add_row("Conflicts", str(status.conflicts))
        table.add_row("Last sync", status.last_sync or "(never)")
        table.add_row("Device", state.device_id or "-")
        if status.next_operation is not None:
            op = status.next_operation
            table.add_row(
                "Next",
                f"{op.operation_type.value} {op.collection}/{op.document_id or '(new)'}",
            )
        console.print(table)

    return render_rich(_render)


def _list_operations(context: SlashCommandContext, user_id: str, status: str | None) -> str:
    records = context.engine.list_operations(user_id, status)
    if not records:
        return f"[queue] No operations for '{user_id}'."

    def _render(console: Console) -> None:
        table = Table(title=f"Operations: {user_id}", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim", max_width=12)
        table.add_column("Type")
        table.add_column("Target")
        table.add_column("Status")
        table.add_column("Retries", justify="right")
        table.add_column("Error")
        for record in records:
            table.add_row(
                record.id[:12],
                record.operation_type.value,
                f"{record.collection}/{record.document_id or '(new)'}",
                record.status.value,
                str(record.retry_count),
                record.error or record.last_error or "",
            )
        console.print(table)

    return render_rich(_render)


def _process(context: SlashCommandContext, user_id: str) -> str:
    result = context.engine.process(user_id)
    lines = [f"[queue] {result.message}"]
    for conflict in result.conflict_details:
        lines.append(
            f"  conflict {conflict.id} on {conflict.collection}/{conflict.document_id} "
            f"(client v{conflict.client_version}, server v{conflict.server_version})"
        )
    return "\n".join(lines)


def _show_help() -> str:
    """Show queue command help."""
    return """[queue] Usage:
  /queue status <user>            Show queue counts and next operation
  /queue list <user> [status]     List operations, oldest first
  /queue process <user>           Run one processing pass
  /queue clear <user>             Drop the user's pending operations
  /queue help                     Show this help"""


COMMAND = SlashCommand(
    name="queue",
    description="Inspect and process sync queues. Usage: /queue [status|list|process|clear] <user>",
    handler=_handler,
    requires_ready=True,
)
