"""Tests for the SQLite session store."""

from __future__ import annotations

import json
import sqlite3
import threading
from typing import TYPE_CHECKING

import pytest

from chat_relay.errors import (
    SessionConflictError,
    SessionNotFoundError,
    StoreNotInitializedError,
)
from chat_relay.sessions.models import Message
from chat_relay.sessions.store import SessionStore

if TYPE_CHECKING:
    from pathlib import Path


def test_create_and_get_round_trip(store: SessionStore) -> None:
    created = store.create_session("First chat")

    fetched = store.get_session(created.id)

    assert fetched == created
    assert fetched.title == "First chat"
    assert fetched.chat_history == []
    assert fetched.created_at


def test_create_with_explicit_id_and_messages(store: SessionStore) -> None:
    messages = [
        Message(role="user", content="Hello, this is a message."),
        Message(role="assistant", content="Hello, how can I help you?"),
    ]
    store.create_session("Seeded", session_id="test-seed-001", messages=messages)

    assert store.get_session("test-seed-001").chat_history == messages


def test_duplicate_id_is_a_conflict(store: SessionStore) -> None:
    store.create_session("a", session_id="same")
    with pytest.raises(SessionConflictError):
        store.create_session("b", session_id="same")
    assert store.get_session("same").title == "a"


def test_list_sessions_newest_first(store: SessionStore) -> None:
    ids = [store.create_session(f"chat {i}").id for i in range(3)]

    listed = [s.id for s in store.list_sessions()]

    assert listed == list(reversed(ids))


def test_get_unknown_session(store: SessionStore) -> None:
    with pytest.raises(SessionNotFoundError) as exc_info:
        store.get_session("missing")
    assert exc_info.value.status_code == 404


def test_replace_history(store: SessionStore) -> None:
    session = store.create_session("chat")
    history = [Message(role="system", content="Be terse.")]

    updated = store.replace_history(session.id, history)

    assert updated.chat_history == history
    assert store.get_session(session.id).chat_history == history


def test_replace_history_unknown_session(store: SessionStore) -> None:
    with pytest.raises(SessionNotFoundError):
        store.replace_history("missing", [])


def test_append_preserves_order(store: SessionStore) -> None:
    session = store.create_session("chat")
    store.append_messages(session.id, Message(role="user", content="one"))
    store.append_messages(
        session.id,
        Message(role="assistant", content="two"),
        Message(role="user", content="three"),
    )

    contents = [m.content for m in store.get_session(session.id).chat_history]

    assert contents == ["one", "two", "three"]


def test_concurrent_appends_do_not_lose_messages(store: SessionStore) -> None:
    session = store.create_session("busy")
    n_threads, per_thread = 8, 10

    def worker(n: int) -> None:
        for i in range(per_thread):
            store.append_messages(session.id, Message(role="user", content=f"{n}-{i}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(n_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    history = store.get_session(session.id).chat_history
    assert len(history) == n_threads * per_thread
    for n in range(n_threads):
        own = [m.content for m in history if m.content.startswith(f"{n}-")]
        assert own == [f"{n}-{i}" for i in range(per_thread)]


def test_rename(store: SessionStore) -> None:
    session = store.create_session("old")

    renamed = store.rename_session(session.id, "new")

    assert renamed.title == "new"
    assert store.get_session(session.id).title == "new"


def test_rename_unknown_session(store: SessionStore) -> None:
    with pytest.raises(SessionNotFoundError):
        store.rename_session("missing", "title")


def test_delete_is_idempotent(store: SessionStore) -> None:
    session = store.create_session("doomed")

    store.delete_session(session.id)
    store.delete_session(session.id)
    store.delete_session("never-existed")

    with pytest.raises(SessionNotFoundError):
        store.get_session(session.id)


def test_unicode_content_is_stored_verbatim(store: SessionStore, db_path: Path) -> None:
    session = store.create_session("Café ☕")
    store.append_messages(session.id, Message(role="user", content="Grüße, 世界"))

    assert store.get_session(session.id).chat_history[0].content == "Grüße, 世界"
    raw = sqlite3.connect(db_path).execute("SELECT chat_history FROM session_chats").fetchone()[0]
    assert json.loads(raw) == [{"role": "user", "content": "Grüße, 世界"}]


def test_use_before_initialize(db_path: Path) -> None:
    store = SessionStore(db_path)
    assert not store.is_initialized
    with pytest.raises(StoreNotInitializedError):
        store.list_sessions()


def test_initialize_twice_keeps_data(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "dir" / "sessions.db"
    store = SessionStore(db_path)
    store.initialize()
    session = store.create_session("kept")
    store.initialize()
    store.close()

    reopened = SessionStore(db_path)
    reopened.initialize()
    try:
        assert reopened.get_session(session.id).title == "kept"
    finally:
        reopened.close()


def test_in_memory_database() -> None:
    store = SessionStore(":memory:")
    store.initialize()
    try:
        store.create_session("ephemeral")
        assert len(store.list_sessions()) == 1
    finally:
        store.close()


def test_delete_keeps_the_append_lock(store: SessionStore) -> None:
    store.create_session("first", session_id="reused")
    lock = store._lock_for("reused")

    with lock:
        store.delete_session("reused")
    store.create_session("second", session_id="reused")

    assert store._lock_for("reused") is lock
    store.append_messages("reused", Message(role="user", content="hi"))
    assert store.get_session("reused").chat_history == [Message(role="user", content="hi")]
