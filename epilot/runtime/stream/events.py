from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Union

from pydantic import ValidationError

from ..models import DraftEmail
from .framing import DropStats

logger = logging.getLogger(__name__)


class StreamEventKind(StrEnum):
    ASSISTANT_CHUNK = "assistant_chunk"
    INTERRUPT_REQUEST = "interrupt_request"
    TURN_ENDED = "turn_ended"


@dataclass(frozen=True, slots=True)
class AssistantChunk:
    text: str

    @property
    def kind(self) -> StreamEventKind:
        return StreamEventKind.ASSISTANT_CHUNK


@dataclass(frozen=True, slots=True)
class InterruptRequest:
    draft: DraftEmail
    payload: str = ""

    @property
    def kind(self) -> StreamEventKind:
        return StreamEventKind.INTERRUPT_REQUEST


@dataclass(frozen=True, slots=True)
class TurnEnded:
    """End of one exchange. Produced by the turn driver, never by the classifier."""

    @property
    def kind(self) -> StreamEventKind:
        return StreamEventKind.TURN_ENDED


StreamEvent = Union[AssistantChunk, InterruptRequest]
TurnStreamEvent = Union[AssistantChunk, InterruptRequest, TurnEnded]


def classify_record(payload: str, *, stats: DropStats | None = None) -> StreamEvent | None:
    """
    Classify one decoded record.

    Unknown kinds and malformed records return None. The server may add event
    kinds this client does not understand, so nothing here raises.
    """

    try:
        data = json.loads(payload)
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError and oversized integer literals.
        _drop(stats, "malformed", f"record is not decodable JSON ({e.__class__.__name__})")
        return None
    if not isinstance(data, dict):
        _drop(stats, "malformed", "record is not a JSON object")
        return None

    kind = data.get("type")
    if kind == "message":
        return _classify_message(data, stats)
    if kind == "interrupt":
        return _classify_interrupt(data, stats)

    _drop(stats, "unknown", f"unsupported type tag {kind!r}")
    return None


def _classify_message(data: dict[str, Any], stats: DropStats | None) -> AssistantChunk | None:
    message = data.get("message")
    if not isinstance(message, dict):
        _drop(stats, "malformed", "message event without a message object")
        return None
    role = message.get("role")
    if role is not None and role != "assistant":
        _drop(stats, "malformed", f"message event with role {role!r}")
        return None
    content = message.get("content")
    if not isinstance(content, str):
        _drop(stats, "malformed", "message event without string content")
        return None
    return AssistantChunk(text=content)


def _classify_interrupt(data: dict[str, Any], stats: DropStats | None) -> InterruptRequest | None:
    raw_draft = data.get("draft_email")
    if not isinstance(raw_draft, dict):
        _drop(stats, "malformed", "interrupt event without draft_email")
        return None
    try:
        draft = DraftEmail.model_validate(raw_draft)
    except ValidationError as e:
        _drop(stats, "malformed", f"invalid draft_email ({e.error_count()} errors)")
        return None
    payload = data.get("payload")
    return InterruptRequest(draft=draft, payload=payload if isinstance(payload, str) else "")


def _drop(stats: DropStats | None, reason: str, detail: str) -> None:
    if stats is not None:
        if reason == "unknown":
            stats.unknown_kinds += 1
        else:
            stats.malformed_records += 1
    logger.debug("Dropped stream record: %s", detail)
