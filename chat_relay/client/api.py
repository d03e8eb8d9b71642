"""Async HTTP client for the session-chats API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import quote

import httpx

from chat_relay.sessions.models import Message, Session

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

LOGGER = logging.getLogger(__name__)

_API_PREFIX = "/api/session-chats"


class ChatApiError(Exception):
    """The server answered with a non-success status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _session_path(session_id: str, *suffix: str) -> str:
    """URL path of a session. The id is percent-encoded as a single path segment."""
    return "/".join([_API_PREFIX, quote(session_id, safe=""), *suffix])


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return response.text


def _raise_for_status(response: httpx.Response) -> None:
    if not response.is_success:
        raise ChatApiError(response.status_code, _error_detail(response))


class SessionChatsClient:
    """Thin wrapper around ``httpx.AsyncClient`` for the session-chats endpoints."""

    def __init__(
        self,
        server_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            transport=transport,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def list_sessions(self) -> list[Session]:
        response = await self._client.get(_API_PREFIX)
        _raise_for_status(response)
        return [Session.model_validate(item) for item in response.json()]

    async def get_session(self, session_id: str) -> Session:
        response = await self._client.get(_session_path(session_id))
        _raise_for_status(response)
        return Session.model_validate(response.json())

    async def create_session(
        self,
        title: str,
        *,
        session_id: str | None = None,
        messages: Iterable[Message] | None = None,
    ) -> Session:
        payload: dict[str, Any] = {"title": title}
        if session_id:
            payload["id"] = session_id
        if messages is not None:
            payload["chatHistory"] = [m.model_dump() for m in messages]
        response = await self._client.post(_API_PREFIX, json=payload)
        _raise_for_status(response)
        return Session.model_validate(response.json())

    async def rename_session(self, session_id: str, title: str) -> Session:
        response = await self._client.patch(
            _session_path(session_id, "title"),
            json={"title": title},
        )
        _raise_for_status(response)
        return Session.model_validate(response.json())

    async def delete_session(self, session_id: str) -> None:
        response = await self._client.delete(_session_path(session_id))
        _raise_for_status(response)

    @asynccontextmanager
    async def stream_message(
        self,
        session_id: str,
        content: str,
        *,
        role: str = "user",
        model: str | None = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Send a message and yield the relayed SSE body as raw byte chunks.

        Non-success statuses raise :class:`ChatApiError` before anything is yielded.
        """
        payload: dict[str, Any] = {"role": role, "content": content}
        if model:
            payload["model"] = model
        async with self._client.stream(
            "PUT",
            _session_path(session_id),
            json=payload,
        ) as response:
            if not response.is_success:
                await response.aread()
                _raise_for_status(response)
            LOGGER.debug("Streaming reply for session %s", session_id)
            yield response.aiter_bytes()
