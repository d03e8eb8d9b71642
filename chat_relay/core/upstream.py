"""Streaming client for an OpenAI-compatible chat completion endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Self

import httpx

from chat_relay.errors import UpstreamUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chat_relay.sessions.models import Message

LOGGER = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 10.0


class CompletionStream:
    """An open upstream response, iterated as raw byte chunks."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status_code(self) -> int:
        """HTTP status of the upstream response."""
        return self._response.status_code

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            if chunk:
                yield chunk

    async def aclose(self) -> None:
        """Release the upstream connection."""
        await self._response.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.aclose()


class CompletionClient:
    """Issue streaming chat completion requests. One attempt per call, no retries."""

    def __init__(
        self,
        openai_base_url: str,
        api_key: str | None = None,
        *,
        request_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.openai_base_url = openai_base_url.rstrip("/")
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout, connect=_CONNECT_TIMEOUT),
            transport=transport,
        )

    @property
    def url(self) -> str:
        """The chat completions endpoint."""
        return f"{self.openai_base_url}/chat/completions"

    def build_payload(self, model: str, messages: Sequence[Message]) -> dict[str, Any]:
        """Return the JSON body of a streaming completion request."""
        return {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": True,
        }

    async def stream_completion(
        self,
        model: str,
        messages: Sequence[Message],
    ) -> CompletionStream:
        """Open a streaming completion.

        Raises :class:`UpstreamUnavailableError` when the endpoint cannot be
        reached or answers with a non-success status. In that case the response
        body text is used as the error detail.
        """
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        request = self._client.build_request(
            "POST",
            self.url,
            json=self.build_payload(model, messages),
            headers=headers,
        )
        LOGGER.info("Opening upstream stream (model=%s, messages=%d)", model, len(messages))
        try:
            response = await self._client.send(request, stream=True)
        except httpx.RequestError as exc:
            LOGGER.error("Upstream connection failed: %s", exc)
            raise UpstreamUnavailableError(str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            try:
                error_text = (await response.aread()).decode(errors="replace")
            finally:
                await response.aclose()
            LOGGER.error("Upstream error %s: %s", response.status_code, error_text)
            raise UpstreamUnavailableError(error_text, status_code=response.status_code)

        return CompletionStream(response)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
