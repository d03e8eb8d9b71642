"""Config file loading and pydantic models for the server settings."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from rich.console import Console

from chat_relay.sessions.relay import DEFAULT_CONTEXT_WINDOW, DEFAULT_MODEL

console = Console()

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "chat-relay" / "config.toml"
CONFIG_PATH_2 = Path("chat-relay-config.toml")

DEFAULT_DB_PATH = Path("sqlite.db")
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_SERVER_URL = "http://localhost:3000"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000


def _replace_dashed_keys(cfg: dict[str, Any]) -> dict[str, Any]:
    """Replace dashed option keys with underscores. Sub-table names are kept as written."""
    normalized: dict[str, Any] = {}
    for key, value in cfg.items():
        if isinstance(value, dict):
            normalized[key] = _replace_dashed_keys(value)
        else:
            normalized[key.replace("-", "_")] = value
    return normalized


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML configuration file and normalize the keys of each table."""
    if config_path_str:
        config_path = Path(config_path_str)
    elif CONFIG_PATH.exists():
        config_path = CONFIG_PATH
    elif CONFIG_PATH_2.exists():
        config_path = CONFIG_PATH_2
    else:
        return {}

    if config_path.exists():
        with config_path.open("rb") as f:
            cfg = tomllib.load(f)
            return {
                k: _replace_dashed_keys(v) if isinstance(v, dict) else v for k, v in cfg.items()
            }

    # Report error only if an explicit path was given
    if config_path_str:
        console.print(
            f"[bold red]Config file not found at {config_path_str}[/bold red]",
        )
    return {}


# --- Pydantic Models for Configuration ---


class UpstreamSettings(BaseModel):
    """Connection to the OpenAI-compatible completion endpoint."""

    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openai_api_key: str | None = None
    default_model: str = DEFAULT_MODEL
    request_timeout: float | None = None

    @field_validator("openai_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ServerSettings(BaseModel):
    """Settings of the session/relay HTTP server."""

    db_path: Path = DEFAULT_DB_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    context_window: int = DEFAULT_CONTEXT_WINDOW
    log_level: str = "INFO"
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)

    @field_validator("context_window")
    @classmethod
    def _positive_window(cls, v: int) -> int:
        if v < 1:
            msg = "context_window must be at least 1"
            raise ValueError(msg)
        return v
