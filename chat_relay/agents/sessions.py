"""Manage sessions on a running chat-relay server."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
import typer

from chat_relay import opts
from chat_relay.cli import app
from chat_relay.client.api import ChatApiError, SessionChatsClient
from chat_relay.core.utils import console, print_error_message, print_message, sessions_table

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

T = TypeVar("T")

sessions_app = typer.Typer(
    name="sessions",
    help="List, create, rename and delete chat sessions.",
    no_args_is_help=True,
)
app.add_typer(sessions_app, name="sessions")


def _run(server_url: str, call: Callable[[SessionChatsClient], Coroutine[Any, Any, T]]) -> T:
    """Run one API call against ``server_url`` and turn failures into CLI errors."""

    async def _go() -> T:
        async with SessionChatsClient(server_url) as api:
            return await call(api)

    try:
        return asyncio.run(_go())
    except ChatApiError as exc:
        print_error_message(exc.detail)
        raise typer.Exit(1) from exc
    except httpx.RequestError as exc:
        print_error_message(
            f"Could not reach the server at {server_url}: {exc}",
            "Start it with `chat-relay serve`.",
        )
        raise typer.Exit(1) from exc


@sessions_app.command("list")
def list_sessions(
    server_url: str = opts.SERVER_URL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """List sessions, newest first."""
    sessions = _run(server_url, lambda api: api.list_sessions())
    if not sessions:
        console.print("[yellow]No sessions yet.[/yellow]")
        return
    console.print(sessions_table(sessions))


@sessions_app.command("show")
def show_session(
    session_id: str = typer.Argument(..., help="Session id"),
    server_url: str = opts.SERVER_URL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Print the history of a session."""
    session = _run(server_url, lambda api: api.get_session(session_id))
    console.print(f"[bold]{session.title}[/bold] [dim]({session.id}, {session.created_at})[/dim]")
    for message in session.chat_history:
        print_message(message)


@sessions_app.command("new")
def new_session(
    title: str = typer.Argument("New chat", help="Title of the new session"),
    server_url: str = opts.SERVER_URL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Create an empty session and print its id."""
    session = _run(server_url, lambda api: api.create_session(title))
    console.print(f"[bold green]Created session {session.id}[/bold green]")


@sessions_app.command("rename")
def rename_session(
    session_id: str = typer.Argument(..., help="Session id"),
    title: str = typer.Argument(..., help="New title"),
    server_url: str = opts.SERVER_URL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Change the title of a session."""
    session = _run(server_url, lambda api: api.rename_session(session_id, title))
    console.print(f"[bold green]Renamed {session.id} to {session.title!r}[/bold green]")


@sessions_app.command("delete")
def delete_session(
    session_id: str = typer.Argument(..., help="Session id"),
    server_url: str = opts.SERVER_URL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Delete a session. Deleting an unknown id succeeds."""
    _run(server_url, lambda api: api.delete_session(session_id))
    console.print(f"[bold green]Deleted session {session_id}[/bold green]")
