"""Interactive terminal chat against a chat-relay server.

- Loads (or creates) a session and prints its history.
- Sends each line you type; the reply is printed as it streams in.
- Ctrl-C while a reply is streaming cancels the request. The server still
  finishes and stores the reply.
- `/exit` or Ctrl-D quits.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import TYPE_CHECKING

import httpx
import typer

from chat_relay import opts
from chat_relay.cli import app
from chat_relay.client.api import ChatApiError, SessionChatsClient
from chat_relay.client.controller import ChatSessionController, SubmissionState
from chat_relay.core.utils import console, print_error_message, print_message
from chat_relay.server.common import setup_rich_logging

if TYPE_CHECKING:
    from collections.abc import Iterator

LOGGER = logging.getLogger(__name__)

EXIT_COMMANDS = frozenset({"/exit", "/quit"})


def _print_token(token: str) -> None:
    console.print(token, end="", markup=False, highlight=False, soft_wrap=True)


@contextlib.contextmanager
def _cancel_on_sigint(controller: ChatSessionController) -> Iterator[None]:
    """Route Ctrl-C to ``controller.cancel`` while a reply is streaming."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.cancel)
    except (NotImplementedError, RuntimeError):
        # add_signal_handler is unavailable on Windows event loops
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _read_line() -> str | None:
    try:
        return await asyncio.to_thread(console.input, "[bold cyan]You:[/bold cyan] ")
    except EOFError:
        return None


async def _chat_loop(
    server_url: str,
    session_id: str | None,
    *,
    title: str,
    model: str | None,
) -> None:
    async with SessionChatsClient(server_url) as api:
        controller: ChatSessionController | None = None
        if session_id:
            session = await api.get_session(session_id)
            controller = ChatSessionController(api, session, model=model, on_token=_print_token)
            console.print(f"[bold]{session.title}[/bold] [dim]({session.id})[/dim]")
            for message in session.chat_history:
                print_message(message)

        while True:
            text = await _read_line()
            if text is None or text.strip() in EXIT_COMMANDS:
                break
            if not text.strip():
                continue
            if controller is None:
                session = await api.create_session(title)
                console.print(f"[dim]Started session {session.id}[/dim]")
                controller = ChatSessionController(api, session, model=model, on_token=_print_token)

            submission = controller.submit(text)
            if submission is None:
                continue
            console.print("[bold green]Assistant:[/bold green] ", end="")
            with _cancel_on_sigint(controller):
                state = await submission.wait()
            console.print()
            if state is SubmissionState.FAILED:
                if isinstance(controller.last_error, asyncio.CancelledError):
                    console.print("[yellow]Cancelled.[/yellow]")
                else:
                    print_error_message(f"Message failed: {controller.last_error}")


@app.command("chat")
def chat(
    session_id: str | None = typer.Argument(
        None,
        help="Session to continue. A new session is created when omitted.",
    ),
    title: str = typer.Option(
        "New chat",
        help="Title used when a new session is created.",
        rich_help_panel="Client Configuration",
    ),
    model: str | None = opts.MODEL,
    server_url: str = opts.SERVER_URL,
    log_level: str = opts.LOG_LEVEL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Chat with the model through a running chat-relay server."""
    setup_rich_logging(log_level, console=console)
    try:
        asyncio.run(_chat_loop(server_url, session_id, title=title, model=model))
    except ChatApiError as exc:
        print_error_message(exc.detail)
        raise typer.Exit(1) from exc
    except httpx.RequestError as exc:
        print_error_message(
            f"Could not reach the server at {server_url}: {exc}",
            "Start it with `chat-relay serve`.",
        )
        raise typer.Exit(1) from exc
    except KeyboardInterrupt:
        console.print("\n[yellow]Bye.[/yellow]")
