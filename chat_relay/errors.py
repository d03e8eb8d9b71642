"""Exceptions raised by the chat relay and mapped onto HTTP status codes."""

from __future__ import annotations


class ChatRelayError(Exception):
    """Base class for chat relay errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RequestValidationError(ChatRelayError):
    """The request payload is missing a role or content, or carries an unknown role."""

    status_code = 400


class SessionNotFoundError(ChatRelayError):
    """No session exists for the requested id."""

    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionConflictError(ChatRelayError):
    """A session with the requested id already exists."""

    status_code = 409

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class StoreNotInitializedError(ChatRelayError):
    """The session store was used before ``initialize()`` was called."""


class UpstreamUnavailableError(ChatRelayError):
    """The completion endpoint could not be reached or answered with an error status."""

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(f"Upstream error: {detail}")
        self.detail = detail
        self.upstream_status = status_code


class UpstreamStreamInterruptedError(ChatRelayError):
    """The upstream stream failed after bytes were already relayed to the client."""
