"""Entry point for ``python -m chat_relay``."""

from chat_relay.cli import app

app(prog_name="chat-relay")
