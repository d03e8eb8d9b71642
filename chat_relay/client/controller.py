"""Client-side state of one chat session.

The controller mirrors what the browser composer does: the user's message is
shown immediately (optimistic update), the relay's streamed reply is surfaced
token by token, and once the exchange completes the local history is replaced
by the server's authoritative copy. A submission can be cancelled at any time.
Cancelling only stops the client from waiting. The server still finishes and
persists the exchange.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

from chat_relay.core.sse import SSEFrameParser
from chat_relay.sessions.models import Message

if TYPE_CHECKING:
    from collections.abc import Callable

    from chat_relay.client.api import SessionChatsClient
    from chat_relay.sessions.models import Session

LOGGER = logging.getLogger(__name__)


class SubmissionState(Enum):
    """Where the controller is in the submit/reconcile cycle."""

    IDLE = "idle"
    OPTIMISTIC_PENDING = "optimistic_pending"
    RECONCILED = "reconciled"
    FAILED = "failed"


class Submission:
    """Handle on an in-flight message submission."""

    def __init__(self, controller: ChatSessionController, task: asyncio.Task[list[Message]]) -> None:
        self._controller = controller
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Abort the underlying request. Returns False if it already finished."""
        return self._task.cancel()

    async def wait(self) -> SubmissionState:
        """Wait for the request to finish and return the resulting state."""
        try:
            await asyncio.wait({self._task})
        except asyncio.CancelledError:
            self._task.cancel()
            raise
        return self._controller._settle(self._task)  # noqa: SLF001


class ChatSessionController:
    """Optimistic local copy of a session's messages."""

    def __init__(
        self,
        api: SessionChatsClient,
        session: Session,
        *,
        model: str | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> None:
        self.api = api
        self.session_id = session.id
        self.title = session.title
        self.messages: list[Message] = list(session.chat_history)
        self.model = model
        self.on_token = on_token
        self.state = SubmissionState.IDLE
        self.last_error: BaseException | None = None
        self.streamed_text = ""
        self._submission: Submission | None = None

    @property
    def input_enabled(self) -> bool:
        """Input is disabled while a submission is pending."""
        return self.state is not SubmissionState.OPTIMISTIC_PENDING

    def submit(self, text: str) -> Submission | None:
        """Optimistically append ``text`` and start sending it.

        Returns None (and changes nothing) for blank input or while another
        submission is pending.
        """
        content = text.strip()
        if not content or not self.input_enabled:
            return None
        self.messages.append(Message(role="user", content=content))
        self.state = SubmissionState.OPTIMISTIC_PENDING
        self.last_error = None
        self.streamed_text = ""
        task = asyncio.create_task(self._exchange(content), name=f"submit-{self.session_id}")
        task.add_done_callback(self._settle)
        self._submission = Submission(self, task)
        return self._submission

    def cancel(self) -> bool:
        """Cancel the pending submission, if any."""
        if self._submission is None or self._submission.done:
            return False
        return self._submission.cancel()

    async def send(self, text: str) -> SubmissionState:
        """Submit ``text`` and wait for the outcome."""
        submission = self.submit(text)
        if submission is None:
            return self.state
        return await submission.wait()

    async def _exchange(self, content: str) -> list[Message]:
        parser = SSEFrameParser()
        async with self.api.stream_message(
            self.session_id,
            content,
            model=self.model,
        ) as chunks:
            async for chunk in chunks:
                for token in parser.feed(chunk):
                    self._emit(token)
        for token in parser.flush():
            self._emit(token)
        session = await self.api.get_session(self.session_id)
        return session.chat_history

    def _emit(self, token: str) -> None:
        self.streamed_text += token
        if self.on_token is not None:
            self.on_token(token)

    def _settle(self, task: asyncio.Task[list[Message]]) -> SubmissionState:
        if self.state is not SubmissionState.OPTIMISTIC_PENDING or (
            self._submission is not None and self._submission._task is not task  # noqa: SLF001
        ):
            return self.state
        self._submission = None
        if task.cancelled():
            LOGGER.info("Submission to session %s was cancelled", self.session_id)
            self.last_error = asyncio.CancelledError()
            self.state = SubmissionState.FAILED
        elif (exc := task.exception()) is not None:
            LOGGER.error("Submission to session %s failed: %s", self.session_id, exc)
            self.last_error = exc
            self.state = SubmissionState.FAILED
        else:
            self.messages = task.result()
            self.state = SubmissionState.RECONCILED
        return self.state


async def start_session(
    api: SessionChatsClient,
    prompt: str,
    *,
    title: str = "New chat",
    model: str | None = None,
    on_token: Callable[[str], None] | None = None,
) -> tuple[ChatSessionController, SubmissionState]:
    """Create a session and send its first prompt."""
    session = await api.create_session(title)
    controller = ChatSessionController(api, session, model=model, on_token=on_token)
    state = await controller.send(prompt)
    return controller, state
