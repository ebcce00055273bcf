from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ChatListItem(BaseModel):
    chat_id: str
    title: str = ""
    created_at: str = ""

    @field_validator("chat_id")
    @classmethod
    def _non_empty_chat_id(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("chat_id must be a non-empty string.")
        return v.strip()


class LoginResult(BaseModel):
    message: str | None = None
    email: str | None = None
    employee_id: str | None = None
    detail: str | None = None


class HistoryEntry(BaseModel):
    """One stored transcript entry as returned by the history endpoint."""

    role: str
    content: Any = None
    timestamp: str = ""


class HistoryPage(BaseModel):
    messages: list[HistoryEntry] = Field(default_factory=list)
