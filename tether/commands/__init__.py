"""Slash command registry."""

from __future__ import annotations

from .api import COMMAND as API_COMMAND
from .conflicts import COMMAND as CONFLICTS_COMMAND
from .help import COMMAND as HELP_COMMAND
from .queue import COMMAND as QUEUE_COMMAND

COMMANDS = [
    HELP_COMMAND,
    QUEUE_COMMAND,
    CONFLICTS_COMMAND,
    API_COMMAND,
]

__all__ = ["COMMANDS"]
