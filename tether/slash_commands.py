"""Shared slash command registry and helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from io import StringIO
import shutil
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .configuration import ConfigurationBundle

if TYPE_CHECKING:
    from .sync import SyncEngine

SlashCommandHandler = Callable[["SlashCommandContext", List[str]], str]


@dataclass
class SlashCommandContext:
    """Context passed into each slash command handler."""

    config: ConfigurationBundle
    router: "CommandRouter"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def engine(self) -> "SyncEngine":
        return self.router.engine


@dataclass
class SlashCommand:
    """Metadata about a slash command."""

    name: str
    description: str
    handler: SlashCommandHandler
    requires_ready: bool = False


class CommandRouter:
    """Registry + dispatcher for slash commands."""

    def __init__(
        self,
        config: ConfigurationBundle,
        metadata: Optional[Dict[str, Any]] = None,
        engine: Optional["SyncEngine"] = None,
    ) -> None:
        self.config = config
        self._commands: Dict[str, SlashCommand] = {}
        self.metadata = metadata or {}
        self._engine = engine

    @property
    def engine(self) -> "SyncEngine":
        """The sync engine, opened on first use."""
        if self._engine is None:
            from .sync import SyncEngine

            self._engine = SyncEngine.from_bundle(self.config)
        return self._engine

    def close(self) -> None:
        """Close the engine if one was opened."""
        if self._engine is not None:
            self._engine.close()
            self._engine = None

    def register(self, command: SlashCommand) -> None:
        self._commands[command.name.lower()] = command

    def handle(self, command_name: str, args: List[str]) -> str:
        command = self._commands.get(command_name.lower().lstrip("/"))
        if command is None:
            return f"[router] Unknown command '/{command_name}'. Use /help to list commands."
        if command.requires_ready and self.config.status != "ready":
            return (
                f"[router] '/{command.name}' requires a ready configuration "
                f"(current status: {self.config.status})."
            )
        context = SlashCommandContext(
            config=self.config,
            router=self,
            metadata=self.metadata,
        )
        return command.handler(context, args)

    @property
    def command_names(self) -> Sequence[str]:
        return sorted(self._commands.keys())

    def commands(self) -> Sequence[SlashCommand]:
        return [self._commands[name] for name in self.command_names]

    def get(self, command_name: str) -> Optional[SlashCommand]:
        return self._commands.get(command_name.lower())


def render_help_table(commands: Sequence[SlashCommand]) -> str:
    """Render a help table listing slash commands."""

    def _render(console: Console) -> None:
        table = Table(title="Slash Commands", show_header=True, header_style="bold cyan")
        table.add_column("Command", style="green", no_wrap=True)
        table.add_column("Description")
        for cmd in commands:
            table.add_row(f"/{cmd.name}", cmd.description)
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Render a Rich layout to an ANSI string without printing live."""

    terminal_size = shutil.get_terminal_size(fallback=(80, 24))
    # Rich misbehaves below these sizes.
    width = max(20, terminal_size.columns)
    height = max(10, terminal_size.lines)

    console = Console(
        record=True,
        force_terminal=True,
        color_system="auto",
        width=width,
        height=height,
        file=StringIO(),
    )
    render_fn(console)
    return console.export_text(clear=False, styles=True)


__all__ = [
    "SlashCommand",
    "SlashCommandContext",
    "CommandRouter",
    "render_help_table",
    "render_rich",
]
