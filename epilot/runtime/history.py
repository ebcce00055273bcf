from __future__ import annotations

import json
from typing import Any, Iterable

from .conversation import MESSAGE_SEPARATOR, TranscriptEntry
from .decisions import render_decision_summary
from .models import HistoryEntry


def _is_decision_content(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("action"), str)


def _user_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if _is_decision_content(content):
        return render_decision_summary(content)
    return json.dumps(content, ensure_ascii=False, indent=2)


def _assistant_content(content: Any) -> str:
    if not isinstance(content, list):
        return content if isinstance(content, str) else ""
    parts: list[str] = []
    for chunk in content:
        if not isinstance(chunk, dict):
            continue
        message = chunk.get("message")
        text = message.get("content") if isinstance(message, dict) else None
        if isinstance(text, str) and text:
            parts.append(text)
    return MESSAGE_SEPARATOR.join(parts)


def normalize_history(entries: Iterable[HistoryEntry | dict[str, Any]]) -> list[TranscriptEntry]:
    """Convert stored history entries into finalized transcript entries."""

    out: list[TranscriptEntry] = []
    for raw in entries:
        entry = raw if isinstance(raw, HistoryEntry) else HistoryEntry.model_validate(raw)
        if entry.role == "user":
            content = _user_content(entry.content)
        elif entry.role == "assistant":
            content = _assistant_content(entry.content)
        else:
            continue
        out.append(
            TranscriptEntry(
                entry_id=f"{entry.role}-{entry.timestamp}",
                role=entry.role,
                content=content,
                timestamp=entry.timestamp,
                finalized=True,
            )
        )
    return out
