"""Slash command for listing available commands."""

from __future__ import annotations

from typing import List

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    render_help_table,
)


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """List commands, or show one command's own usage text."""
    if args:
        name = args[0].lstrip("/")
        if context.router.get(name) is None:
            return f"[help] No command named '/{name}'."
        return context.router.handle(name, ["help"])
    return render_help_table(context.router.commands())


COMMAND = SlashCommand(
    name="help",
    description="List available slash commands. Usage: /help [command]",
    handler=_handler,
)
