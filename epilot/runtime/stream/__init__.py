from __future__ import annotations

from .events import (
    AssistantChunk,
    InterruptRequest,
    StreamEvent,
    StreamEventKind,
    TurnEnded,
    TurnStreamEvent,
    classify_record,
)
from .framing import DATA_PREFIX, DropStats, FrameDecoder, adecode_frames, decode_frames

__all__ = [
    "AssistantChunk",
    "DATA_PREFIX",
    "DropStats",
    "FrameDecoder",
    "InterruptRequest",
    "StreamEvent",
    "StreamEventKind",
    "TurnEnded",
    "TurnStreamEvent",
    "adecode_frames",
    "classify_record",
    "decode_frames",
]
