"""Tests for the incremental SSE frame parser."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from chat_relay.core import sse
from chat_relay.core.sse import SSEFrameParser, extract_content_from_chunk, iter_content, parse_chunk
from tests.conftest import DONE_FRAME, sse_frame

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def test_split_frame_is_reassembled() -> None:
    parser = SSEFrameParser()
    first = parser.feed(b'data: {"choices":[{"delta":{"content":"Hel')
    second = parser.feed(b'lo"}}]}\n')
    assert first == []
    assert second == ["Hello"]
    assert parser.residual == b""


def test_done_sentinel_yields_nothing() -> None:
    parser = SSEFrameParser()
    assert parser.feed(b"data: [DONE]\n") == []
    assert parser.flush() == []


def test_malformed_json_is_skipped_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    parser = SSEFrameParser()
    with caplog.at_level(logging.WARNING, logger=sse.__name__):
        tokens = parser.feed(b"data: not-json\n" + sse_frame("after"))
    assert tokens == ["after"]
    assert "malformed" in caplog.text


def test_many_frames_in_one_chunk() -> None:
    parser = SSEFrameParser()
    body = sse_frame("a") + sse_frame("b") + sse_frame("c") + DONE_FRAME
    assert parser.feed(body) == ["a", "b", "c"]


def test_byte_by_byte_feeding_matches_whole_body() -> None:
    body = sse_frame("Bonjour") + sse_frame(", ") + sse_frame("monde") + DONE_FRAME
    parser = SSEFrameParser()
    tokens: list[str] = []
    for i in range(len(body)):
        tokens.extend(parser.feed(body[i : i + 1]))
    assert "".join(tokens) == "Bonjour, monde"


def test_multibyte_character_split_across_chunks() -> None:
    body = sse_frame("café ☕")
    cut = body.index("☕".encode()) + 1
    parser = SSEFrameParser()
    tokens = parser.feed(body[:cut]) + parser.feed(body[cut:])
    assert tokens == ["café ☕"]


def test_crlf_line_endings() -> None:
    parser = SSEFrameParser()
    assert parser.feed(b'data: {"choices":[{"delta":{"content":"x"}}]}\r\n\r\n') == ["x"]


def test_non_data_lines_are_ignored() -> None:
    parser = SSEFrameParser()
    body = b": keep-alive\nevent: message\nid: 3\n" + sse_frame("ok")
    assert parser.feed(body) == ["ok"]


def test_flush_parses_unterminated_last_line() -> None:
    parser = SSEFrameParser()
    assert parser.feed(b'data: {"choices":[{"delta":{"content":"tail"}}]}') == []
    assert parser.flush() == ["tail"]
    assert parser.flush() == []


def test_invalid_utf8_line_is_skipped() -> None:
    parser = SSEFrameParser()
    assert parser.feed(b"data: \xff\xfe\n" + sse_frame("fine")) == ["fine"]


@pytest.mark.parametrize(
    ("chunk", "expected"),
    [
        ({"choices": [{"delta": {"content": "hi"}}]}, "hi"),
        ({"choices": [{"delta": {"role": "assistant"}}]}, None),
        ({"choices": [{"delta": {"content": None}}]}, None),
        ({"choices": [{"delta": {"content": 42}}]}, None),
        ({"choices": []}, None),
        ({"usage": {"total_tokens": 3}}, None),
    ],
)
def test_extract_content_from_chunk(chunk: dict, expected: str | None) -> None:
    assert extract_content_from_chunk(chunk) == expected


def test_parse_chunk_requires_data_prefix() -> None:
    assert parse_chunk('{"choices": []}') is None
    assert parse_chunk("data: [DONE]") is None
    assert parse_chunk("data: [1, 2]") is None
    assert parse_chunk('data: {"choices": []}') == {"choices": []}


@pytest.mark.asyncio
async def test_iter_content_is_lazy_over_async_chunks() -> None:
    seen: list[bytes] = []

    async def chunks() -> AsyncIterator[bytes]:
        for chunk in (b'data: {"choices":[{"delta":{"content":"A', b'"}}]}\n', sse_frame("B")):
            seen.append(chunk)
            yield chunk

    stream = iter_content(chunks())
    assert await anext(stream) == "A"
    assert len(seen) == 2
    assert [token async for token in stream] == ["B"]
