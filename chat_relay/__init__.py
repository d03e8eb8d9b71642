"""Chat session server with a streaming LLM relay."""

from __future__ import annotations

__version__ = "0.1.0"
