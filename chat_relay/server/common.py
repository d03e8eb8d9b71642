"""Logging setup and request logging for the relay server."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from fastapi import Request

logger = logging.getLogger(__name__)

# Request/connection chatter from the HTTP stack, kept at WARNING and above.
_QUIET_LOGGERS = ("httpx", "httpcore")
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")
_HEALTH_PATH = "/health"


def setup_rich_logging(log_level: str = "info", *, console: Console | None = None) -> None:
    """Route the root and uvicorn loggers through a single ``RichHandler``.

    Args:
        log_level: Logging level name (debug, info, warning, error). Unknown
            names fall back to INFO.
        console: Rich console to log to. A new one is created if omitted.

    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handler = RichHandler(
        console=console or Console(),
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # uvicorn installs its own handlers; replace them so its lines look like ours
    for name in _UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.setLevel(level)
        uvicorn_logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


async def log_requests_middleware(request: Request, call_next: Any) -> Any:
    """Log each request with its status and the time until the response started.

    For ``PUT /api/session-chats/{id}`` the time covers validation, the user
    message write and opening the upstream stream, not the streamed body.
    Health checks are logged at debug level. Statuses of 400 and above are
    logged as warnings.
    """
    start = perf_counter()
    client_ip = request.client.host if request.client else "unknown"
    response = await call_next(request)
    elapsed_ms = (perf_counter() - start) * 1000

    if response.status_code >= 400:  # noqa: PLR2004
        level = logging.WARNING
    elif request.url.path == _HEALTH_PATH:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logger.log(
        level,
        "%s %s -> %d in %.1f ms (from %s)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        client_ip,
    )
    return response
