"""Session data models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]
ROLES: frozenset[str] = frozenset({"user", "assistant", "system"})


class Message(BaseModel):
    """One turn of a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class Session(BaseModel):
    """A persisted conversation.

    Serialized with the camelCase keys the browser front-end expects
    (``createdAt``, ``chatHistory``).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    created_at: str = Field(alias="createdAt")
    chat_history: list[Message] = Field(default_factory=list, alias="chatHistory")


class CreateSessionRequest(BaseModel):
    """Body of ``POST /api/session-chats``."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    id: str | None = None
    chat_history: list[Message] | None = Field(default=None, alias="chatHistory")


class RelayRequest(BaseModel):
    """Body of ``PUT /api/session-chats/{id}``.

    Fields are optional so that missing values are reported as a 400 by the
    relay instead of a 422 by FastAPI.
    """

    role: str | None = None
    content: str | None = None
    model: str | None = None


class RenameRequest(BaseModel):
    """Body of ``PATCH /api/session-chats/{id}/title``."""

    title: str | None = None
