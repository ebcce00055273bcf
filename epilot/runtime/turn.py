from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, Union

import httpx

from .errors import CancellationToken, ErrorCode, TransportError, wrap_httpx_exception
from .stream import DropStats, FrameDecoder, TurnEnded, TurnStreamEvent, classify_record

logger = logging.getLogger(__name__)

SEND_PATH = "/chats/ai/send"
RESUME_PATH = "/chats/ai/interrupt/respond"


@dataclass(frozen=True, slots=True)
class UtterancePayload:
    text: str


@dataclass(frozen=True, slots=True)
class ResumePayload:
    fields: dict[str, Any] = field(default_factory=dict)


TurnPayload = Union[UtterancePayload, ResumePayload]


class TurnTransport(Protocol):
    async def open_turn(self, conversation_id: str, payload: TurnPayload) -> "TurnStream": ...


_EOF = object()
_CANCELLED = object()


async def _anext(fragments: AsyncIterator[bytes | str]) -> bytes | str:
    return await fragments.__anext__()


class TurnStream:
    """
    One network exchange exposed as an ordered, cancellable event sequence.

    Iterating yields AssistantChunk and InterruptRequest events in arrival order
    and finishes with a single TurnEnded once the body is exhausted. After
    `cancel()` the sequence stops without TurnEnded and without raising.
    """

    def __init__(
        self,
        fragments: AsyncIterator[bytes | str],
        *,
        close: Callable[[], Awaitable[None]] | None = None,
        operation: str = "stream",
        stats: DropStats | None = None,
    ) -> None:
        self._fragments = fragments
        self._close = close
        self._closed = False
        self._iter: AsyncIterator[TurnStreamEvent] | None = None
        self._token = CancellationToken()
        self.operation = operation
        self.stats = stats if stats is not None else DropStats()
        self.ended = False

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def cancel(self) -> None:
        if self._token.cancelled:
            return
        if not self.ended:
            logger.debug("Cancelling %s exchange", self.operation)
        self._token.cancel()

    def __aiter__(self) -> AsyncIterator[TurnStreamEvent]:
        if self._iter is None:
            self._iter = self._events()
        return self._iter

    async def aclose(self) -> None:
        if self._iter is not None:
            await self._iter.aclose()  # type: ignore[attr-defined]
        await self._release()

    async def _events(self) -> AsyncIterator[TurnStreamEvent]:
        decoder = FrameDecoder(stats=self.stats)
        try:
            while True:
                fragment = await self._next_fragment()
                if fragment is _CANCELLED:
                    return
                if fragment is _EOF:
                    break
                for record in decoder.feed(fragment):
                    if self._token.cancelled:
                        return
                    event = classify_record(record, stats=self.stats)
                    if event is not None:
                        yield event
            decoder.close()
            if self._token.cancelled:
                return
            self.ended = True
            if self.stats.total:
                logger.debug("%s exchange dropped %d records/lines", self.operation, self.stats.total)
            yield TurnEnded()
        finally:
            await self._release()

    async def _next_fragment(self) -> Any:
        if self._token.cancelled:
            return _CANCELLED
        read = asyncio.ensure_future(_anext(self._fragments))
        stop = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [fut for fut in (read, stop) if not fut.done()]
            for fut in pending:
                fut.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self._token.cancelled:
            if read.done() and not read.cancelled():
                # Retrieve the result so a late transport error is not reported as unhandled.
                read.exception()
            return _CANCELLED
        try:
            return read.result()
        except StopAsyncIteration:
            return _EOF
        except httpx.HTTPError as e:
            logger.warning("%s exchange aborted by transport: %s", self.operation, e)
            raise wrap_httpx_exception(e, operation=self.operation) from e

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is None:
            return
        try:
            await self._close()
        except httpx.HTTPError as e:
            logger.debug("Ignoring error while closing %s exchange: %s", self.operation, e)


class HttpTurnTransport:
    """Opens turn exchanges against the assistant backend with httpx."""

    def __init__(self, client: httpx.AsyncClient, *, user_id: str) -> None:
        self._client = client
        self._user_id = user_id

    def _build_request(self, conversation_id: str, payload: TurnPayload) -> tuple[httpx.Request, str]:
        if isinstance(payload, UtterancePayload):
            request = self._client.build_request(
                "POST",
                SEND_PATH,
                json={"user_id": self._user_id, "chat_id": conversation_id, "message": payload.text},
            )
            return request, "send"
        request = self._client.build_request(
            "POST",
            RESUME_PATH,
            params={"user_id": self._user_id, "chat_id": conversation_id},
            json=dict(payload.fields),
        )
        return request, "interrupt_respond"

    async def open_turn(self, conversation_id: str, payload: TurnPayload) -> TurnStream:
        request, operation = self._build_request(conversation_id, payload)
        logger.info("Opening %s exchange for chat %s", operation, conversation_id)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise wrap_httpx_exception(e, operation=operation) from e

        if response.is_error:
            try:
                await response.aread()
            finally:
                await response.aclose()
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise wrap_httpx_exception(e, operation=operation) from e

        if response.status_code == 204:
            await response.aclose()
            raise TransportError(
                f"No response body from {operation} endpoint",
                code=ErrorCode.NO_BODY,
                operation=operation,
                status_code=204,
                retryable=False,
            )

        return TurnStream(response.aiter_bytes(), close=response.aclose, operation=operation)
