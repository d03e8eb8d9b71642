"""Console helpers shared by the CLI commands."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from chat_relay.sessions.models import Message, Session

console = Console()
err_console = Console(stderr=True)

_ROLE_STYLES = {"user": "bold cyan", "assistant": "bold green", "system": "bold magenta"}


def print_error_message(message: str, suggestion: str | None = None) -> None:
    """Print an error message in a red panel."""
    text = f"[bold red]{message}[/bold red]"
    if suggestion:
        text += f"\n\n[yellow]{suggestion}[/yellow]"
    err_console.print(Panel(text, title="Error", border_style="red"))


def print_message(message: Message) -> None:
    """Print one chat turn with a role-colored prefix."""
    style = _ROLE_STYLES.get(message.role, "bold")
    console.print(f"[{style}]{message.role.capitalize()}:[/{style}] ", end="")
    console.print(message.content, markup=False, highlight=False)


def sessions_table(sessions: list[Session]) -> Table:
    """Render sessions as a table, in the order given."""
    table = Table(title="Chat sessions")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Created", style="dim")
    table.add_column("Messages", justify="right")
    for session in sessions:
        table.add_row(
            session.id,
            session.title,
            session.created_at,
            str(len(session.chat_history)),
        )
    return table
