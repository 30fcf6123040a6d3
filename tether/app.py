"""
Command-line entry point for Tether.

``tether <command> [args]`` runs one slash command and exits; ``tether serve``
runs the API server in the foreground; with no arguments an interactive
prompt accepts slash commands until ``/quit``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
import sys
from typing import List, Optional, Sequence

from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_data_dir,
)
from .logging_utils import setup_logging
from .slash_commands import CommandRouter

REPO_ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("tether")
EXIT_WORDS = {"quit", "exit"}


def build_router(config: ConfigurationBundle) -> CommandRouter:
    """Register every slash command on a fresh router."""

    router = CommandRouter(config, metadata={"repo_root": str(REPO_ROOT)})
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print warnings and errors so operators can correct issues quickly."""

    notable = [diag for diag in config.diagnostics if diag.level != "info"]
    if not notable:
        return

    print("[config] Diagnostics:", file=sys.stderr)
    for diag in notable:
        prefix = diag.source or config.data_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]", file=sys.stderr)


def configure_autocomplete(router: CommandRouter) -> None:
    """Enable readline tab completion for slash commands."""

    if readline is None:
        return

    commands = list(router.command_names)

    def completer(text: str, state: int):
        fragment = text[1:] if text.startswith("/") else text
        matches = [f"/{cmd}" for cmd in commands if cmd.startswith(fragment)]
        if state < len(matches):
            return matches[state]
        return None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


def execute_cli_command(command_line: str, router: CommandRouter) -> str:
    """Run one slash command line and print its output."""

    stripped = command_line.strip().lstrip("/")
    if not stripped:
        return ""

    command, *args = stripped.split()
    result = router.handle(command, args)
    print(result)
    logger.info("Executed CLI command: /%s", stripped)
    return result


def prepare_runtime(
    data_dir: Optional[Path] = None,
    *,
    console_logs: bool = False,
) -> ConfigurationBundle:
    """Load configuration and install logging under the data directory."""

    resolved_dir = data_dir or resolve_data_dir()
    resolved_dir.mkdir(parents=True, exist_ok=True)
    config_bundle = load_runtime_configuration(resolved_dir)

    logging_cfg = config_bundle.section("logging")
    level_name = (os.environ.get("TETHER_LOG_LEVEL") or logging_cfg.get("level") or "INFO").upper()
    log_path = setup_logging(
        config_bundle.data_dir,
        level_name,
        structured=bool(logging_cfg.get("structured", True)),
        console=console_logs,
    )
    config_bundle.log_path = log_path
    try:
        log_path.relative_to(config_bundle.data_dir)
    except ValueError:
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=(
                    "Data log directory is not writable; "
                    f"logging to fallback path '{log_path}'."
                ),
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)
    return config_bundle


def serve(config_bundle: ConfigurationBundle) -> int:
    """Run the API server until interrupted."""

    from .api import TetherAPIServer
    from .sync import SyncEngine

    engine = SyncEngine.from_bundle(config_bundle)
    server = TetherAPIServer(config_bundle=config_bundle, engine=engine)
    print(f"[Tether] API listening on http://{server.host}:{server.port}")
    try:
        return 0 if server.start(blocking=True) else 1
    finally:
        engine.close()


def interactive(router: CommandRouter) -> int:
    """Read slash commands from the terminal until EOF or /quit."""

    configure_autocomplete(router)
    print(f"[Tether] {router.config.section('runtime').get('name', 'Tether')} ready. Type /help.")
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Exiting Tether]")
            return 0

        if not line:
            continue
        if line.lstrip("/").lower() in EXIT_WORDS:
            print("[Goodbye]")
            return 0
        execute_cli_command(line, router)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for `python -m tether` and the ``tether`` script."""

    args: List[str] = list(sys.argv[1:] if argv is None else argv)
    serving = bool(args) and args[0] == "serve"

    config_bundle = prepare_runtime(console_logs=serving)
    emit_configuration_report(config_bundle)

    if serving:
        return serve(config_bundle)

    router = build_router(config_bundle)
    try:
        if not args:
            return interactive(router)
        execute_cli_command(" ".join(args), router)
        return 0
    finally:
        router.close()


__all__ = ["main", "build_router", "execute_cli_command", "prepare_runtime", "serve"]
