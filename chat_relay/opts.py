"""Shared CLI options for chat-relay commands."""

from __future__ import annotations

import typer

from chat_relay import config


def _config_callback(ctx: typer.Context, value: str | None) -> str | None:
    from chat_relay.cli import set_config_defaults  # noqa: PLC0415

    set_config_defaults(ctx, value)
    return value


# --- General Options ---
CONFIG_FILE = typer.Option(
    None,
    "--config",
    help="Path to a TOML config file. Defaults to ~/.config/chat-relay/config.toml.",
    is_eager=True,
    callback=_config_callback,
    rich_help_panel="General Options",
)
LOG_LEVEL = typer.Option(
    "INFO",
    "--log-level",
    help="Logging level.",
    rich_help_panel="General Options",
)

# --- Storage Options ---
DB_PATH = typer.Option(
    config.DEFAULT_DB_PATH,
    "--db-path",
    help="Path of the SQLite database holding the sessions.",
    rich_help_panel="Storage Configuration",
)

# --- Upstream Options ---
OPENAI_BASE_URL = typer.Option(
    config.DEFAULT_OPENAI_BASE_URL,
    "--openai-base-url",
    envvar="OPENAI_BASE_URL",
    help="Base URL of the OpenAI-compatible API (e.g. http://localhost:8080/v1 for llama.cpp).",
    rich_help_panel="Upstream Configuration",
)
OPENAI_API_KEY = typer.Option(
    None,
    "--openai-api-key",
    envvar="OPENAI_API_KEY",
    help="API key sent to the completion endpoint.",
    rich_help_panel="Upstream Configuration",
)
DEFAULT_MODEL = typer.Option(
    config.DEFAULT_MODEL,
    "--default-model",
    help="Model used when a message does not name one.",
    rich_help_panel="Upstream Configuration",
)

# --- Client Options ---
SERVER_URL = typer.Option(
    config.DEFAULT_SERVER_URL,
    "--server-url",
    envvar="CHAT_RELAY_SERVER_URL",
    help="URL of a running chat-relay server.",
    rich_help_panel="Client Configuration",
)
MODEL = typer.Option(
    None,
    "--model",
    "-m",
    help="Model to request for each message (server default when omitted).",
    rich_help_panel="Client Configuration",
)
