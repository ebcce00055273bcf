from __future__ import annotations

from typing import Any, Mapping

from .errors import DecisionValidationError
from .models import DecisionAction, InterruptDecision


def parse_address_list(text: str | None) -> list[str]:
    """Split a comma-separated recipient field into cleaned addresses."""

    if not text:
        return []
    return [item.strip() for item in text.split(",") if item.strip()]


def _clean_addresses(values: list[str]) -> list[str]:
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def validate_decision(decision: InterruptDecision) -> None:
    if decision.action is DecisionAction.AI_REWRITE:
        if not (decision.instructions or "").strip():
            raise DecisionValidationError("Instructions are required for an AI rewrite.", field="instructions")
        return

    if decision.action is DecisionAction.MANUAL_EDIT:
        if not _clean_addresses(decision.to):
            raise DecisionValidationError("At least one recipient is required for a manual edit.", field="to")
        if not (decision.subject or "").strip():
            raise DecisionValidationError("Subject is required for a manual edit.", field="subject")
        if not (decision.body or "").strip():
            raise DecisionValidationError("Body is required for a manual edit.", field="body")


def encode_decision(decision: InterruptDecision) -> dict[str, Any]:
    """Validate `decision` and build the payload that resumes the interrupted turn."""

    validate_decision(decision)
    out: dict[str, Any] = {
        "action": decision.action.value,
        "is_html": bool(decision.is_html),
    }
    if decision.action is DecisionAction.AI_REWRITE:
        out["instructions"] = (decision.instructions or "").strip()
    elif decision.action is DecisionAction.MANUAL_EDIT:
        out["to"] = _clean_addresses(decision.to)
        out["subject"] = (decision.subject or "").strip()
        out["body"] = decision.body
        out["cc"] = _clean_addresses(decision.cc)
    return out


def render_decision_summary(fields: Mapping[str, Any]) -> str:
    """
    Render a decision (as a resume payload or stored history object) for the transcript.

    The first line is always `Decision: <action>`. A manual edit lists the
    fields it sets, ending with the body verbatim. Unrecognised actions list
    the same fields followed by any instructions.
    """

    action = fields.get("action")
    action_text = action.value if isinstance(action, DecisionAction) else str(action or "-")
    lines = [f"Decision: {action_text}"]

    if action_text in {DecisionAction.APPROVE.value, DecisionAction.REJECT.value}:
        return "\n".join(lines)

    if action_text == DecisionAction.AI_REWRITE.value:
        instructions = fields.get("instructions")
        if isinstance(instructions, str) and instructions:
            lines.append(f"Instructions: {instructions}")
        return "\n".join(lines)

    to = fields.get("to")
    if isinstance(to, list) and to:
        lines.append(f"To: {', '.join(str(x) for x in to)}")
    cc = fields.get("cc")
    if isinstance(cc, list) and cc:
        lines.append(f"CC: {', '.join(str(x) for x in cc)}")
    subject = fields.get("subject")
    if isinstance(subject, str):
        lines.append(f"Subject: {subject}")
    is_html = fields.get("is_html")
    if isinstance(is_html, bool):
        lines.append(f"HTML: {'yes' if is_html else 'no'}")
    body = fields.get("body")
    if isinstance(body, str):
        lines.append("Body:")
        lines.append(body)
    if action_text == DecisionAction.MANUAL_EDIT.value:
        return "\n".join(lines)

    # Actions from older stored history also list their instructions.
    instructions = fields.get("instructions")
    if isinstance(instructions, str) and instructions.strip():
        lines.append(f"Instructions: {instructions}")
    return "\n".join(lines)


def summarize_decision(decision: InterruptDecision) -> str:
    return render_decision_summary(encode_decision(decision))
