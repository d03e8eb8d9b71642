"""Relay a user message to the completion endpoint and persist the exchange.

For every ``PUT /api/session-chats/{id}`` the relay:

1. validates the payload and checks that the session exists,
2. appends the user message to the stored history,
3. opens the upstream stream with the last ``context_window`` messages,
4. forwards each upstream chunk to the HTTP response as soon as it arrives
   while feeding it to an :class:`~chat_relay.core.sse.SSEFrameParser`,
5. appends the reconstructed assistant message once the upstream ends.

Steps 1 to 3 happen before the HTTP response starts, so their failures map
onto 400/404/500. Steps 4 and 5 run in a background task that outlives the
HTTP response. A client that disconnects mid-stream does not prevent the
assistant message from being persisted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import TYPE_CHECKING

from chat_relay.core.sse import SSEFrameParser
from chat_relay.core.tasks import run_in_background
from chat_relay.errors import (
    ChatRelayError,
    RequestValidationError,
    SessionNotFoundError,
    UpstreamStreamInterruptedError,
)
from chat_relay.sessions.models import ROLES, Message

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chat_relay.core.upstream import CompletionClient, CompletionStream
    from chat_relay.sessions.models import RelayRequest
    from chat_relay.sessions.store import SessionStore

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_CONTEXT_WINDOW = 10


def _elapsed_ms(start: float) -> float:
    """Return elapsed milliseconds since start."""
    return (perf_counter() - start) * 1000


class RelayState(Enum):
    """Lifecycle of one relayed exchange."""

    VALIDATING = "validating"
    APPENDING_USER_MESSAGE = "appending_user_message"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class RelayExchange:
    """State of a single in-flight relay request.

    Owns the accumulation buffer (content tokens plus the parser's residual
    bytes) and the channel of chunks waiting to be written to the client.
    """

    session_id: str
    model: str | None = None
    state: RelayState = RelayState.VALIDATING
    tokens: list[str] = field(default_factory=list)
    error: ChatRelayError | None = None
    bytes_relayed: int = 0
    task: asyncio.Task[None] | None = None
    _parser: SSEFrameParser = field(default_factory=SSEFrameParser, repr=False)
    _channel: asyncio.Queue[bytes | None] = field(default_factory=asyncio.Queue, repr=False)

    @property
    def assistant_content(self) -> str:
        """The assistant reply reconstructed so far."""
        return "".join(self.tokens)

    def transition(self, state: RelayState) -> None:
        """Move to ``state``. ``DONE`` and ``ERRORED`` are final."""
        if self.state in (RelayState.DONE, RelayState.ERRORED):
            msg = f"Exchange for {self.session_id} already ended in {self.state.value}"
            raise RuntimeError(msg)
        LOGGER.debug(
            "Relay %s: %s -> %s",
            self.session_id,
            self.state.value,
            state.value,
        )
        self.state = state

    def fail(self, error: ChatRelayError) -> None:
        """Record ``error`` and move to ``ERRORED``."""
        self.error = error
        if self.state is not RelayState.ERRORED:
            self.transition(RelayState.ERRORED)

    def relay(self, chunk: bytes) -> None:
        """Forward ``chunk`` to the client and accumulate its content tokens."""
        self._channel.put_nowait(chunk)
        self.bytes_relayed += len(chunk)
        self.tokens.extend(self._parser.feed(chunk))

    def finish_parsing(self) -> None:
        """Parse whatever the upstream left without a trailing newline."""
        self.tokens.extend(self._parser.flush())

    def close_channel(self) -> None:
        """Signal the end of the response body."""
        self._channel.put_nowait(None)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield relayed chunks in arrival order until the channel is closed.

        If the exchange ended ``ERRORED`` the error is raised after the last
        chunk. The HTTP response is then aborted without its terminating chunk,
        so a reply that was not persisted never looks complete to the client.
        """
        while (chunk := await self._channel.get()) is not None:
            yield chunk
        if self.state is RelayState.ERRORED and self.error is not None:
            raise self.error


class StreamingRelay:
    """Coordinate the session store, the upstream client and the SSE parser."""

    def __init__(
        self,
        store: SessionStore,
        completion_client: CompletionClient,
        *,
        default_model: str = DEFAULT_MODEL,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
    ) -> None:
        self.store = store
        self.completion_client = completion_client
        self.default_model = default_model
        self.context_window = context_window

    @staticmethod
    def validate(request: RelayRequest) -> Message:
        """Return the user message carried by ``request`` or raise a 400."""
        if not request.role or not request.content or not request.content.strip():
            msg = "The message must contain a role and a content"
            raise RequestValidationError(msg)
        if request.role not in ROLES:
            msg = f"Unknown role: {request.role}"
            raise RequestValidationError(msg)
        return Message(role=request.role, content=request.content)  # type: ignore[arg-type]

    async def start(self, session_id: str, request: RelayRequest) -> RelayExchange:
        """Run the exchange up to an open upstream stream.

        Errors raised here happen before any byte reaches the client. The rest of
        the exchange continues in a background task; read it with
        :meth:`RelayExchange.iter_bytes`.
        """
        exchange = RelayExchange(session_id=session_id)
        try:
            user_message = self.validate(request)
            self.store.get_session(session_id)

            exchange.transition(RelayState.APPENDING_USER_MESSAGE)
            session = self.store.append_messages(session_id, user_message)

            exchange.transition(RelayState.STREAMING)
            exchange.model = request.model or self.default_model
            context = session.chat_history[-self.context_window :]
            stream = await self.completion_client.stream_completion(exchange.model, context)
        except ChatRelayError as exc:
            LOGGER.warning("Relay for session %s rejected: %s", session_id, exc.message)
            exchange.fail(exc)
            raise

        exchange.task = run_in_background(
            self._pump(exchange, stream),
            label=f"relay-{session_id}",
        )
        return exchange

    async def _pump(self, exchange: RelayExchange, stream: CompletionStream) -> None:
        start = perf_counter()
        try:
            try:
                async with stream:
                    async for chunk in stream:
                        exchange.relay(chunk)
                exchange.finish_parsing()
            except Exception as exc:
                LOGGER.exception(
                    "Upstream stream interrupted after %d bytes (session=%s)",
                    exchange.bytes_relayed,
                    exchange.session_id,
                )
                exchange.fail(UpstreamStreamInterruptedError(str(exc) or type(exc).__name__))
                return

            exchange.transition(RelayState.FINALIZING)
            self._persist_reply(exchange)
        finally:
            exchange.close_channel()
            LOGGER.info(
                "Relay finished in %.1f ms (session=%s, state=%s, bytes=%d)",
                _elapsed_ms(start),
                exchange.session_id,
                exchange.state.value,
                exchange.bytes_relayed,
            )

    def _persist_reply(self, exchange: RelayExchange) -> None:
        reply = Message(role="assistant", content=exchange.assistant_content)
        try:
            self.store.append_messages(exchange.session_id, reply)
        except SessionNotFoundError as exc:
            LOGGER.warning(
                "Session %s vanished during streaming; dropping assistant reply",
                exchange.session_id,
            )
            exchange.fail(exc)
            return
        except Exception as exc:
            LOGGER.exception("Could not persist assistant reply (session=%s)", exchange.session_id)
            exchange.fail(ChatRelayError(str(exc)))
            return
        exchange.transition(RelayState.DONE)
