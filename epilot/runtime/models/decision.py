from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class DecisionAction(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    AI_REWRITE = "ai_rewrite"
    MANUAL_EDIT = "manual_edit"


class InterruptDecision(BaseModel):
    """
    Human answer to an interrupt.

    Construction only checks types. The per-action required fields are enforced by
    `validate_decision()` so a form can build a decision first and report the
    failing field afterwards.
    """

    model_config = ConfigDict(frozen=True)

    action: DecisionAction
    is_html: bool = False
    instructions: str | None = None
    to: list[str] = Field(default_factory=list)
    subject: str | None = None
    body: str | None = None
    cc: list[str] = Field(default_factory=list)
