"""FastAPI application factory for the session/relay server."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as BodyValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from chat_relay.config import ServerSettings
from chat_relay.core.tasks import wait_for_background_tasks
from chat_relay.core.upstream import CompletionClient
from chat_relay.errors import ChatRelayError, RequestValidationError
from chat_relay.server.common import log_requests_middleware
from chat_relay.sessions.models import (  # noqa: TC001
    CreateSessionRequest,
    RelayRequest,
    RenameRequest,
    Session,
)
from chat_relay.sessions.relay import StreamingRelay
from chat_relay.sessions.store import SessionStore

LOGGER = logging.getLogger(__name__)

_SHUTDOWN_GRACE_SECONDS = 30.0


def _describe_body_errors(exc: BodyValidationError) -> str:
    """One-line summary of FastAPI's validation errors, e.g. ``body.content: Field required``."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "Invalid request: " + "; ".join(parts)


def create_app(
    settings: ServerSettings | None = None,
    *,
    store: SessionStore | None = None,
    completion_client: CompletionClient | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    ``store`` and ``completion_client`` default to instances built from
    ``settings``; pass them explicitly to share or fake them.
    """
    settings = settings or ServerSettings()
    store = store or SessionStore(settings.db_path)
    completion_client = completion_client or CompletionClient(
        settings.upstream.openai_base_url,
        settings.upstream.openai_api_key,
        request_timeout=settings.upstream.request_timeout,
    )
    relay = StreamingRelay(
        store,
        completion_client,
        default_model=settings.upstream.default_model,
        context_window=settings.context_window,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):  # noqa: ANN202
        LOGGER.info("Opening session store...")
        store.initialize()
        yield
        LOGGER.info("Waiting for in-flight relays...")
        await wait_for_background_tasks(timeout=_SHUTDOWN_GRACE_SECONDS)
        await completion_client.aclose()
        store.close()

    app = FastAPI(title="Chat Relay", lifespan=lifespan)
    app.state.store = store
    app.state.relay = relay
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests_middleware)

    @app.exception_handler(ChatRelayError)
    async def handle_chat_relay_error(_request: Request, exc: ChatRelayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(BodyValidationError)
    async def handle_body_error(_request: Request, exc: BodyValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _describe_body_errors(exc)})

    @app.exception_handler(sqlite3.Error)
    async def handle_storage_error(request: Request, exc: sqlite3.Error) -> JSONResponse:
        LOGGER.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {
            "status": "ok",
            "database": str(store.db_path),
            "upstream": completion_client.openai_base_url,
        }

    @app.get("/api/session-chats")
    def list_sessions() -> list[Session]:
        return store.list_sessions()

    @app.get("/api/session-chats/{session_id}")
    def get_session(session_id: str) -> Session:
        return store.get_session(session_id)

    @app.post("/api/session-chats", status_code=201)
    def create_session(body: CreateSessionRequest) -> Session:
        if body.id and "/" in body.id:
            msg = "A session id cannot contain '/'"
            raise RequestValidationError(msg)
        return store.create_session(
            body.title,
            session_id=body.id,
            messages=body.chat_history,
        )

    @app.put("/api/session-chats/{session_id}")
    async def relay_message(session_id: str, body: RelayRequest) -> StreamingResponse:
        """Append the message and stream the model's raw SSE output back."""
        LOGGER.info("Relay request for session %s (model=%s)", session_id, body.model)
        exchange = await relay.start(session_id, body)
        return StreamingResponse(exchange.iter_bytes(), media_type="text/plain")

    @app.patch("/api/session-chats/{session_id}/title")
    def rename_session(session_id: str, body: RenameRequest) -> Session:
        if body.title is None or not body.title.strip():
            msg = "The title is required"
            raise RequestValidationError(msg)
        return store.rename_session(session_id, body.title.strip())

    @app.delete("/api/session-chats/{session_id}")
    def delete_session(session_id: str) -> dict[str, Any]:
        store.delete_session(session_id)
        return {"message": "Session deleted"}

    return app
