"""Core helpers: SSE parsing, upstream client, background tasks."""
