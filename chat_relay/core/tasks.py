"""Keep references to fire-and-forget asyncio tasks until they finish."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Coroutine

LOGGER = logging.getLogger(__name__)

_BACKGROUND_TASKS: set[asyncio.Task[Any]] = set()


def _on_done(task: asyncio.Task[Any]) -> None:
    _BACKGROUND_TASKS.discard(task)
    if task.cancelled():
        LOGGER.warning("Background task %s was cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.error("Background task %s failed", task.get_name(), exc_info=exc)


def run_in_background(coro: Coroutine[Any, Any, Any], *, label: str) -> asyncio.Task[Any]:
    """Schedule ``coro`` on the running loop and hold a reference until it completes."""
    task = asyncio.create_task(coro, name=label)
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_background_tasks() -> int:
    """Number of background tasks that have not finished yet."""
    return len(_BACKGROUND_TASKS)


async def wait_for_background_tasks(timeout: float | None = None) -> None:
    """Wait for all currently scheduled background tasks."""
    loop = asyncio.get_running_loop()
    tasks = [t for t in _BACKGROUND_TASKS if not t.done() and t.get_loop() is loop]
    if not tasks:
        return
    LOGGER.info("Waiting for %d background task(s)", len(tasks))
    _done, pending = await asyncio.wait(tasks, timeout=timeout)
    if pending:
        LOGGER.warning("%d background task(s) still running after %.1f s", len(pending), timeout)
