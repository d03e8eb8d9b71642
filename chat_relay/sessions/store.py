"""Persist chat sessions in a lightweight SQLite database.

All sessions live in a single ``session_chats`` table. The message list of a
session is stored as a JSON array of ``{role, content}`` objects and is always
written as a whole, inside a transaction, so a failed write leaves the
previous list in place.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

from chat_relay.errors import (
    SessionConflictError,
    SessionNotFoundError,
    StoreNotInitializedError,
)
from chat_relay.sessions.models import Message, Session

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

LOGGER = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS session_chats (
    id           TEXT PRIMARY KEY NOT NULL,
    title        TEXT NOT NULL DEFAULT '',
    created_at   TEXT NOT NULL,
    chat_history TEXT NOT NULL DEFAULT '[]'
);
"""
_MEMORY_DB = ":memory:"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _dump_history(messages: Iterable[Message]) -> str:
    return json.dumps([m.model_dump() for m in messages], ensure_ascii=False)


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        title=row["title"] or "",
        created_at=row["created_at"],
        chat_history=[Message(**m) for m in json.loads(row["chat_history"] or "[]")],
    )


class SessionStore:
    """SQLite-backed store of chat sessions.

    The store owns one connection, opened by :meth:`initialize` and released by
    :meth:`close`. Access to the connection is serialized, so the store can be
    shared between the event loop and FastAPI's worker threads.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if db_path == _MEMORY_DB else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.RLock()
        self._session_locks: dict[str, threading.Lock] = {}
        self._session_locks_guard = threading.Lock()

    # -- Lifecycle --

    def initialize(self) -> None:
        """Open the database and create the table. Calling it twice is harmless."""
        with self._conn_lock:
            if self._conn is not None:
                return
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            with conn:
                conn.execute(_SCHEMA)
            self._conn = conn
        LOGGER.info("Session store ready at %s", self.db_path)

    def close(self) -> None:
        """Close the underlying connection."""
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def is_initialized(self) -> bool:
        """Whether :meth:`initialize` has been called and :meth:`close` has not."""
        return self._conn is not None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._conn_lock:
            if self._conn is None:
                msg = "Session store is not initialized. Call initialize() first."
                raise StoreNotInitializedError(msg)
            with self._conn:
                yield self._conn

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._session_locks_guard:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = self._session_locks[session_id] = threading.Lock()
            return lock

    # -- Queries --

    def list_sessions(self) -> list[Session]:
        """Return all sessions, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM session_chats ORDER BY created_at DESC, rowid DESC",
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    def get_session(self, session_id: str) -> Session:
        """Return the session with the given id or raise :class:`SessionNotFoundError`."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM session_chats WHERE id = ?",
                (session_id,),
            ).fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)
        return _row_to_session(row)

    # -- Mutations --

    def create_session(
        self,
        title: str,
        *,
        session_id: str | None = None,
        messages: Iterable[Message] | None = None,
    ) -> Session:
        """Create a session with an empty (or seeded) history."""
        session = Session(
            id=session_id or uuid4().hex,
            title=title,
            created_at=_now_iso(),
            chat_history=list(messages or []),
        )
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO session_chats (id, title, created_at, chat_history)"
                    " VALUES (?, ?, ?, ?)",
                    (
                        session.id,
                        session.title,
                        session.created_at,
                        _dump_history(session.chat_history),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise SessionConflictError(session.id) from exc
        LOGGER.info("Created session %s (%r)", session.id, session.title)
        return session

    def replace_history(self, session_id: str, messages: Iterable[Message]) -> Session:
        """Overwrite the whole message list of a session.

        This is a plain replace; callers doing read-modify-write must serialize
        themselves or use :meth:`append_messages`.
        """
        history = list(messages)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM session_chats WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                raise SessionNotFoundError(session_id)
            conn.execute(
                "UPDATE session_chats SET chat_history = ? WHERE id = ?",
                (_dump_history(history), session_id),
            )
        LOGGER.debug("Wrote %d messages to session %s", len(history), session_id)
        session = _row_to_session(row)
        session.chat_history = history
        return session

    def append_messages(self, session_id: str, *messages: Message) -> Session:
        """Append messages to a session's history, serialized per session id."""
        with self._lock_for(session_id):
            current = self.get_session(session_id)
            return self.replace_history(session_id, [*current.chat_history, *messages])

    def rename_session(self, session_id: str, title: str) -> Session:
        """Change the title of a session."""
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE session_chats SET title = ? WHERE id = ?",
                (title, session_id),
            )
            if cur.rowcount == 0:
                raise SessionNotFoundError(session_id)
        LOGGER.info("Renamed session %s to %r", session_id, title)
        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> None:
        """Delete a session. Deleting a missing session is not an error.

        The per-session lock is kept: an append may hold it right now, and a
        session recreated under the same id must share it.
        """
        with self._transaction() as conn:
            conn.execute("DELETE FROM session_chats WHERE id = ?", (session_id,))
        LOGGER.info("Deleted session %s", session_id)
