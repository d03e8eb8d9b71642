"""Server-side commands: run the relay server and prepare its database."""

from __future__ import annotations

import logging
from pathlib import Path  # noqa: TC003 - Typer evaluates annotations at runtime

import typer
from pydantic import ValidationError

from chat_relay import opts
from chat_relay.cli import app
from chat_relay.config import DEFAULT_HOST, DEFAULT_PORT, ServerSettings, UpstreamSettings
from chat_relay.core.utils import console, print_error_message
from chat_relay.errors import SessionConflictError
from chat_relay.server.common import setup_rich_logging
from chat_relay.sessions.models import Message
from chat_relay.sessions.store import SessionStore

LOGGER = logging.getLogger(__name__)

SEED_SESSION_ID = "test-seed-001"
SEED_TITLE = "Starter session"
SEED_MESSAGES = (
    Message(role="user", content="Hello, this is a message."),
    Message(role="assistant", content="Hello, how can I help you?"),
)


@app.command("serve")
def serve(
    db_path: Path = opts.DB_PATH,
    host: str = typer.Option(
        DEFAULT_HOST,
        help="Host to bind to",
        rich_help_panel="Server Configuration",
    ),
    port: int = typer.Option(
        DEFAULT_PORT,
        help="Port to bind to",
        rich_help_panel="Server Configuration",
    ),
    openai_base_url: str = opts.OPENAI_BASE_URL,
    openai_api_key: str | None = opts.OPENAI_API_KEY,
    default_model: str = opts.DEFAULT_MODEL,
    context_window: int = typer.Option(
        10,
        help="Number of most recent messages sent to the model as context.",
        rich_help_panel="Upstream Configuration",
    ),
    request_timeout: float | None = typer.Option(
        None,
        help="Read timeout in seconds for the upstream stream (no timeout when omitted).",
        rich_help_panel="Upstream Configuration",
    ),
    log_level: str = opts.LOG_LEVEL,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Start the chat session server.

    Sessions are stored in SQLite. Messages sent with ``PUT
    /api/session-chats/{id}`` are relayed to the completion endpoint and the
    model's SSE stream is forwarded to the caller as it arrives.
    """
    setup_rich_logging(log_level, console=console)

    try:
        settings = ServerSettings(
            db_path=db_path.expanduser(),
            host=host,
            port=port,
            context_window=context_window,
            log_level=log_level,
            upstream=UpstreamSettings(
                openai_base_url=openai_base_url,
                openai_api_key=openai_api_key,
                default_model=default_model,
                request_timeout=request_timeout,
            ),
        )
    except ValidationError as exc:
        print_error_message(f"Invalid settings: {exc}")
        raise typer.Exit(1) from exc

    import uvicorn  # noqa: PLC0415

    from chat_relay.sessions.api import create_app  # noqa: PLC0415

    console.print(f"[bold green]Starting chat relay on {host}:{port}[/bold green]")
    console.print(f"  💾 DB: [blue]{settings.db_path}[/blue]")
    console.print(f"  🤖 Backend: [blue]{settings.upstream.openai_base_url}[/blue]")
    console.print(f"  🧠 Default model: [blue]{settings.upstream.default_model}[/blue]")
    console.print(f"  📜 Context: last [blue]{settings.context_window}[/blue] messages")

    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@app.command("init-db")
def init_db(
    db_path: Path = opts.DB_PATH,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Create the SQLite database and the sessions table."""
    store = SessionStore(db_path.expanduser())
    store.initialize()
    store.close()
    console.print(f"[bold green]Database initialized at {store.db_path}[/bold green]")


@app.command("seed")
def seed(
    db_path: Path = opts.DB_PATH,
    config_file: str | None = opts.CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Insert a starter session so the UI has something to show."""
    store = SessionStore(db_path.expanduser())
    store.initialize()
    try:
        store.create_session(SEED_TITLE, session_id=SEED_SESSION_ID, messages=SEED_MESSAGES)
    except SessionConflictError as exc:
        print_error_message(
            f"Session {SEED_SESSION_ID} already exists.",
            "Delete it first or use a different database.",
        )
        raise typer.Exit(1) from exc
    finally:
        store.close()
    console.print(f"[bold green]Seeded session {SEED_SESSION_ID}[/bold green]")
