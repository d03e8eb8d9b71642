"""Incremental parsing of OpenAI-style Server-Sent-Events streams.

An upstream completion stream is a sequence of newline-terminated lines such as::

    data: {"choices":[{"delta":{"content":"Hel"}}]}
    data: [DONE]

Network reads do not respect line boundaries, so :class:`SSEFrameParser` keeps
the trailing, not yet terminated part of the last chunk as *residual bytes*
and prepends it to the next chunk. Only complete lines are ever decoded and
parsed, which means a line (or a multi-byte UTF-8 character) split across two
reads is reassembled exactly once.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
_LOG_PREVIEW_CHARS = 200


def parse_chunk(line: str) -> dict[str, Any] | None:
    """Return the JSON payload of a ``data:`` line, or None if the line carries none.

    Non-data lines and the ``[DONE]`` sentinel yield None silently. A data
    line whose payload is not a JSON object is logged and yields None.
    """
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX) :].strip()
    if not payload or payload == DONE_SENTINEL:
        return None
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        LOGGER.warning("Skipping malformed SSE data line: %s", payload[:_LOG_PREVIEW_CHARS])
        return None
    if not isinstance(parsed, dict):
        LOGGER.warning("Skipping non-object SSE payload: %s", payload[:_LOG_PREVIEW_CHARS])
        return None
    return parsed


def extract_content_from_chunk(chunk: dict[str, Any]) -> str | None:
    """Return ``choices[0].delta.content`` when it is a string."""
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


class SSEFrameParser:
    """Turn successive byte chunks into assistant content tokens.

    Invariant: ``_residual`` never contains a newline. Everything before the
    last newline seen so far has been parsed exactly once.
    """

    def __init__(self) -> None:
        self._residual = b""

    @property
    def residual(self) -> bytes:
        """Bytes of the incomplete trailing line, waiting for more data."""
        return self._residual

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk and return the tokens of every line it completes."""
        data = self._residual + chunk
        *lines, self._residual = data.split(b"\n")
        tokens: list[str] = []
        for raw in lines:
            token = self._parse_line(raw)
            if token:
                tokens.append(token)
        return tokens

    def flush(self) -> list[str]:
        """Parse the residual as a final line, for streams lacking a trailing newline."""
        raw, self._residual = self._residual, b""
        if not raw:
            return []
        token = self._parse_line(raw)
        return [token] if token else []

    def _parse_line(self, raw: bytes) -> str | None:
        try:
            line = raw.decode("utf-8").rstrip("\r")
        except UnicodeDecodeError:
            LOGGER.warning("Skipping SSE line that is not valid UTF-8 (%d bytes)", len(raw))
            return None
        chunk = parse_chunk(line)
        if chunk is None:
            return None
        return extract_content_from_chunk(chunk) or None


async def iter_content(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Lazily yield content tokens from an async stream of byte chunks."""
    parser = SSEFrameParser()
    async for chunk in chunks:
        for token in parser.feed(chunk):
            yield token
    for token in parser.flush():
        yield token
