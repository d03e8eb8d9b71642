"""Root Typer app of chat-relay and config-file defaults."""

from __future__ import annotations

from typing import Any

import typer

from . import __version__
from .config import load_config
from .core.utils import console

app = typer.Typer(
    name="chat-relay",
    help="Chat session server that relays messages to an OpenAI-compatible API, plus a terminal client.",
    add_completion=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"chat-relay {__version__}")
        raise typer.Exit


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(  # noqa: ARG001
        False,  # noqa: FBT003
        "--version",
        help="Show the version and exit.",
        is_eager=True,
        callback=_version_callback,
    ),
) -> None:
    """Chat sessions with a streaming LLM relay."""
    if ctx.invoked_subcommand is None:
        console.print("[bold red]No command specified.[/bold red] Available commands:")
        console.print(ctx.get_help())
        raise typer.Exit
    import dotenv  # noqa: PLC0415

    dotenv.load_dotenv()


def _command_path(ctx: typer.Context) -> list[str]:
    """Command names from the outermost subcommand group down to ``ctx``'s command."""
    names: list[str] = []
    current = ctx
    while current is not None:
        # The root app has no table of its own; ``[defaults]`` plays that role.
        if (current is ctx or current.parent is not None) and current.command.name:
            names.append(current.command.name)
        current = current.parent
    return names[::-1]


def set_config_defaults(ctx: typer.Context, config_file: str | None) -> None:
    """Fill ``ctx.default_map`` from the config file.

    ``[defaults]`` applies to every command. A table named after the command
    (``[serve]``) or after a group and its subcommand (``[sessions.list]``)
    overrides it, innermost table last.
    """
    config = load_config(config_file)
    defaults: dict[str, Any] = dict(config.get("defaults", {}))
    table: dict[str, Any] = config
    for name in _command_path(ctx):
        table = table.get(name) or table.get(name.replace("-", "_")) or {}
        if not isinstance(table, dict):
            break
        defaults.update({k: v for k, v in table.items() if not isinstance(v, dict)})
    ctx.default_map = defaults


# Import commands from other modules to register them
from .agents import chat, serve, sessions  # noqa: E402, F401
