from __future__ import annotations

import json

import pytest

from epilot.runtime.models import DraftEmail
from epilot.runtime.stream import AssistantChunk, DropStats, InterruptRequest, StreamEventKind, classify_record


def test_message_record_becomes_assistant_chunk() -> None:
    payload = '{"type":"message","message":{"role":"assistant","content":"hi"}}'
    event = classify_record(payload)
    assert event == AssistantChunk(text="hi")
    assert event.kind is StreamEventKind.ASSISTANT_CHUNK


def test_interrupt_record_carries_draft() -> None:
    payload = json.dumps(
        {
            "type": "interrupt",
            "payload": "p",
            "draft_email": {"to": ["a@b.com"], "subject": "S", "body": "B", "cc": None, "is_html": False},
        }
    )
    event = classify_record(payload)
    assert isinstance(event, InterruptRequest)
    assert event.payload == "p"
    assert event.draft == DraftEmail(to=["a@b.com"], subject="S", body="B", cc=None, is_html=False)
    assert event.kind is StreamEventKind.INTERRUPT_REQUEST


def test_interrupt_without_payload_defaults_to_empty() -> None:
    event = classify_record('{"type":"interrupt","draft_email":{"to":[],"subject":"s","body":"b"}}')
    assert isinstance(event, InterruptRequest)
    assert event.payload == ""
    assert event.draft.cc is None
    assert event.draft.is_html is False


@pytest.mark.parametrize(
    "payload",
    [
        '{"type":"unknown_kind"}',
        '{"message":{"role":"assistant","content":"no tag"}}',
        "not json",
        "[1, 2, 3]",
        '"just a string"',
        '{"type":"message"}',
        '{"type":"message","message":{"role":"assistant","content":42}}',
        '{"type":"message","message":{"role":"user","content":"echo"}}',
        '{"type":"interrupt","payload":"p"}',
        '{"type":"interrupt","draft_email":{"to":"a@b.com","subject":"s","body":"b"}}',
        '{"type":"interrupt","draft_email":{"to":[],"subject":"s","body":"b","is_html":"maybe"}}',
    ],
)
def test_malformed_or_unknown_records_are_dropped(payload: str) -> None:
    assert classify_record(payload) is None


def test_drops_are_counted_by_reason() -> None:
    stats = DropStats()
    classify_record('{"type":"unknown_kind"}', stats=stats)
    classify_record("{broken", stats=stats)
    classify_record('{"type":"message","message":{}}', stats=stats)
    assert stats.unknown_kinds == 1
    assert stats.malformed_records == 2
    assert stats.total == 3


@pytest.mark.parametrize(
    "payload",
    [
        '{"type":"message","seq":' + "1" * 5000 + "}",
        "[" * 100000 + "]" * 100000,
    ],
    ids=["oversized-integer", "deep-nesting"],
)
def test_records_the_json_parser_rejects_are_dropped(payload: str) -> None:
    stats = DropStats()
    assert classify_record(payload, stats=stats) is None
    assert stats.malformed_records == 1


def test_message_without_role_is_accepted() -> None:
    assert classify_record('{"type":"message","message":{"content":""}}') == AssistantChunk(text="")
