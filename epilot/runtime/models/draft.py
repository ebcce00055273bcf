from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DraftEmail(BaseModel):
    """Email the assistant proposes to send, attached to an interrupt."""

    model_config = ConfigDict(frozen=True)

    to: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    cc: list[str] | None = None
    is_html: bool = False

    @field_validator("to", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("subject", "body", mode="before")
    @classmethod
    def _none_to_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("is_html", mode="before")
    @classmethod
    def _none_to_false(cls, v: Any) -> Any:
        return False if v is None else v
