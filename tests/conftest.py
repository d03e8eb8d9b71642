"""Shared test fixtures and configuration."""

from __future__ import annotations

import contextlib
import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from chat_relay.sessions.store import SessionStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator
    from pathlib import Path


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(5))


def sse_frame(content: str) -> bytes:
    """One OpenAI-style delta frame."""
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload)}\n\n".encode()


DONE_FRAME = b"data: [DONE]\n\n"


class ChunkStream(httpx.AsyncByteStream):
    """Response body yielding fixed chunks, optionally failing part-way."""

    def __init__(self, chunks: list[bytes], *, fail_after: int | None = None) -> None:
        self._chunks = chunks
        self._fail_after = fail_after

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self._chunks):
            if self._fail_after is not None and index == self._fail_after:
                msg = "connection reset by peer"
                raise httpx.ReadError(msg)
            yield chunk


class FakeUpstream:
    """``httpx.MockTransport`` handler standing in for the completion endpoint."""

    def __init__(self) -> None:
        self.chunks: list[bytes] = [sse_frame("Hello"), sse_frame(" there"), DONE_FRAME]
        self.status_code = 200
        self.error_body = b""
        self.fail_after: int | None = None
        self.connect_error = False
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.connect_error:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if self.status_code != 200:  # noqa: PLR2004
            return httpx.Response(self.status_code, content=self.error_body)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            stream=ChunkStream(self.chunks, fail_after=self.fail_after),
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    """A scriptable fake completion endpoint."""
    return FakeUpstream()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "sessions.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[SessionStore]:
    """An initialized session store backed by a temporary database."""
    session_store = SessionStore(db_path)
    session_store.initialize()
    yield session_store
    session_store.close()


@pytest.fixture
def make_frames() -> Callable[..., list[bytes]]:
    """Build a complete upstream body from content tokens."""

    def _make(*tokens: str) -> list[bytes]:
        return [*(sse_frame(t) for t in tokens), DONE_FRAME]

    return _make
