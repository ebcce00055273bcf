from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from epilot.runtime.errors import ErrorCode, TransportError
from epilot.runtime.stream import AssistantChunk, InterruptRequest, TurnEnded
from epilot.runtime.turn import HttpTurnTransport, ResumePayload, TurnStream, UtterancePayload

MESSAGE = b'data: {"type":"message","message":{"role":"assistant","content":"hi"}}\n'
INTERRUPT = (
    b'data: {"type":"interrupt","payload":"p","draft_email":'
    b'{"to":["a@b.com"],"subject":"S","body":"B","cc":null,"is_html":false}}\n'
)


async def _fragments(*parts: bytes, gate: asyncio.Event | None = None, fail: BaseException | None = None):
    for part in parts:
        await asyncio.sleep(0)
        yield part
    if gate is not None:
        await gate.wait()
    if fail is not None:
        raise fail


async def _collect(stream: TurnStream) -> list:
    return [event async for event in stream]


def test_events_in_order_then_turn_ended() -> None:
    stream = TurnStream(_fragments(MESSAGE[:10], MESSAGE[10:] + b"keepalive\n", INTERRUPT))
    events = asyncio.run(_collect(stream))
    assert events[0] == AssistantChunk(text="hi")
    assert isinstance(events[1], InterruptRequest)
    assert isinstance(events[2], TurnEnded)
    assert len(events) == 3
    assert stream.ended
    assert stream.stats.noise_lines == 1


def test_unknown_records_do_not_reach_the_caller() -> None:
    stream = TurnStream(_fragments(b'data: {"type":"tool_progress"}\n', b"data: {oops\n", MESSAGE))
    events = asyncio.run(_collect(stream))
    assert events == [AssistantChunk(text="hi"), TurnEnded()]
    assert stream.stats.unknown_kinds == 1
    assert stream.stats.malformed_records == 1


def test_cancel_during_blocked_read_ends_quietly() -> None:
    closed: list[bool] = []

    async def _close() -> None:
        closed.append(True)

    async def scenario() -> list:
        gate = asyncio.Event()
        stream = TurnStream(_fragments(MESSAGE, gate=gate), close=_close)
        events: list = []

        async def consume() -> None:
            async for event in stream:
                events.append(event)

        task = asyncio.create_task(consume())

        async def first_event() -> None:
            while not events:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(first_event(), timeout=2)
        await asyncio.sleep(0.05)
        assert events == [AssistantChunk(text="hi")]
        assert not task.done()
        stream.cancel()
        stream.cancel()
        await asyncio.wait_for(task, timeout=2)
        return events

    events = asyncio.run(scenario())
    assert events == [AssistantChunk(text="hi")]
    assert closed == [True]


def test_cancel_between_events_emits_nothing_further() -> None:
    async def scenario() -> list:
        stream = TurnStream(_fragments(MESSAGE + MESSAGE + MESSAGE))
        seen: list = []
        async for event in stream:
            seen.append(event)
            stream.cancel()
        return seen

    assert asyncio.run(scenario()) == [AssistantChunk(text="hi")]


def test_cancel_after_end_is_a_no_op() -> None:
    async def scenario() -> TurnStream:
        stream = TurnStream(_fragments(MESSAGE))
        await _collect(stream)
        stream.cancel()
        stream.cancel()
        await stream.aclose()
        return stream

    stream = asyncio.run(scenario())
    assert stream.ended
    assert stream.cancelled


def test_remote_abort_raises_transport_error() -> None:
    async def scenario() -> list:
        stream = TurnStream(_fragments(MESSAGE, fail=httpx.ReadError("connection reset")), operation="send")
        seen: list = []
        with pytest.raises(TransportError) as exc_info:
            async for event in stream:
                seen.append(event)
        assert exc_info.value.code is ErrorCode.NETWORK_ERROR
        assert exc_info.value.operation == "send"
        return seen

    assert asyncio.run(scenario()) == [AssistantChunk(text="hi")]


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))


def test_http_transport_posts_utterance_and_streams_body() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=_fragments(MESSAGE[:5], MESSAGE[5:], INTERRUPT[:40], INTERRUPT[40:]))

    async def scenario() -> list:
        async with _mock_client(handler) as client:
            stream = await HttpTurnTransport(client, user_id="emp-1").open_turn("chat-1", UtterancePayload(text="hello"))
            return await _collect(stream)

    events = asyncio.run(scenario())
    assert [type(e) for e in events] == [AssistantChunk, InterruptRequest, TurnEnded]
    assert requests[0].url.path == "/chats/ai/send"
    assert json.loads(requests[0].content) == {"user_id": "emp-1", "chat_id": "chat-1", "message": "hello"}


def test_http_transport_resume_uses_interrupt_endpoint() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=b"")

    async def scenario() -> list:
        async with _mock_client(handler) as client:
            transport = HttpTurnTransport(client, user_id="emp-1")
            stream = await transport.open_turn("chat-1", ResumePayload(fields={"action": "approve", "is_html": False}))
            return await _collect(stream)

    assert asyncio.run(scenario()) == [TurnEnded()]
    request = requests[0]
    assert request.url.path == "/chats/ai/interrupt/respond"
    assert request.url.params["user_id"] == "emp-1"
    assert request.url.params["chat_id"] == "chat-1"
    assert json.loads(request.content) == {"action": "approve", "is_html": False}


@pytest.mark.parametrize(
    ("status", "code"),
    [(500, ErrorCode.SERVER_ERROR), (401, ErrorCode.AUTH), (404, ErrorCode.NOT_FOUND), (204, ErrorCode.NO_BODY)],
)
def test_http_transport_fails_before_any_event(status: int, code: ErrorCode) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=b"" if status == 204 else b'{"detail":"nope"}')

    async def scenario() -> None:
        async with _mock_client(handler) as client:
            await HttpTurnTransport(client, user_id="u").open_turn("c", UtterancePayload(text="x"))

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.code is code


def test_http_transport_connect_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def scenario() -> None:
        async with _mock_client(handler) as client:
            await HttpTurnTransport(client, user_id="u").open_turn("c", UtterancePayload(text="x"))

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.code is ErrorCode.NETWORK_ERROR
    assert exc_info.value.retryable is True
