from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable, Protocol

from .decisions import encode_decision, render_decision_summary
from .errors import TransportError, TurnInProgressError
from .ids import decision_entry_id, entry_id, turn_id
from .models import DraftEmail, InterruptDecision
from .stream import AssistantChunk, InterruptRequest, TurnEnded
from .turn import ResumePayload, TurnPayload, TurnStream, TurnTransport, UtterancePayload

logger = logging.getLogger(__name__)

MESSAGE_SEPARATOR = "\n\n"


class ConversationState(StrEnum):
    IDLE = "idle"
    TURN_OPEN = "turn_open"
    AWAITING_DECISION = "awaiting_decision"


class TurnStatus(StrEnum):
    OPEN = "open"
    AWAITING_DECISION = "awaiting_decision"
    CLOSED = "closed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class TranscriptEntry:
    entry_id: str
    role: str  # "user" | "assistant"
    content: str
    timestamp: str
    finalized: bool = False


@dataclass(slots=True)
class DecisionRound:
    draft: DraftEmail
    payload: str = ""
    decision: InterruptDecision | None = None


@dataclass(slots=True)
class Turn:
    turn_id: str
    utterance: str
    status: TurnStatus = TurnStatus.OPEN
    rounds: list[DecisionRound] = field(default_factory=list)
    messages: list[TranscriptEntry] = field(default_factory=list)


class ChatDirectory(Protocol):
    """Allocates conversation ids and serves stored history."""

    async def create_conversation(self) -> str: ...

    async def load_transcript(self, conversation_id: str) -> list[TranscriptEntry]: ...


class Conversation:
    """
    Per-conversation turn state machine.

    States move IDLE -> TURN_OPEN on `submit()`, TURN_OPEN -> AWAITING_DECISION on
    an interrupt, AWAITING_DECISION -> TURN_OPEN on `decide()`, and back to IDLE
    when an exchange ends without a pending interrupt, fails, or is cancelled.
    Assistant chunks accumulate into one transcript entry joined by a blank line.
    """

    def __init__(
        self,
        *,
        transport: TurnTransport,
        directory: ChatDirectory | None = None,
        conversation_id: str | None = None,
        on_change: Callable[["Conversation"], None] | None = None,
    ) -> None:
        self._transport = transport
        self._directory = directory
        self.conversation_id = conversation_id
        self._on_change = on_change

        self.state = ConversationState.IDLE
        self.transcript: list[TranscriptEntry] = []
        self.turns: list[Turn] = []
        self.pending: DecisionRound | None = None
        self.last_error: TransportError | None = None

        self._active: TurnStream | None = None
        self._exchange_done: asyncio.Event | None = None
        self._saw_chunk = False

    @property
    def active_turn(self) -> Turn | None:
        if self.turns and self.turns[-1].status is not TurnStatus.CLOSED:
            return self.turns[-1]
        return None

    @property
    def pending_draft(self) -> DraftEmail | None:
        return self.pending.draft if self.pending is not None else None

    @property
    def thinking(self) -> bool:
        return self.state is ConversationState.TURN_OPEN and not self._saw_chunk

    async def load_history(self) -> None:
        if self.state is not ConversationState.IDLE:
            raise TurnInProgressError("Cannot reload history while a turn is in flight.", conversation_id=self.conversation_id)
        if self._directory is None or self.conversation_id is None:
            return
        self.transcript = await self._directory.load_transcript(self.conversation_id)
        self._notify()

    async def submit(self, utterance: str) -> None:
        text = (utterance or "").strip()
        if not text:
            raise ValueError("Message must not be empty.")
        if self.state is not ConversationState.IDLE:
            raise TurnInProgressError("A turn is already in flight for this conversation.", conversation_id=self.conversation_id)
        if self.conversation_id is None and self._directory is None:
            raise RuntimeError("No conversation id and no chat directory to allocate one.")
        if self._exchange_done is not None and not self._exchange_done.is_set():
            # A cancelled exchange is still unwinding.
            await self._close_exchange()
            if self.state is not ConversationState.IDLE:
                raise TurnInProgressError("A turn is already in flight for this conversation.", conversation_id=self.conversation_id)

        self.last_error = None
        self.transcript.append(TranscriptEntry(entry_id=entry_id("user"), role="user", content=text, timestamp=_now_iso(), finalized=True))
        self.turns.append(Turn(turn_id=turn_id(), utterance=text))
        self._enter_turn_open()
        try:
            if self.conversation_id is None and self._directory is not None:
                self.conversation_id = await self._directory.create_conversation()
                logger.info("Allocated conversation %s", self.conversation_id)
        except TransportError as e:
            self._fail(e)
            raise
        except BaseException:
            if self.state is not ConversationState.IDLE:
                self._settle()
            raise
        if self.state is not ConversationState.TURN_OPEN:
            return
        await self._run_exchange(UtterancePayload(text=text))

    async def decide(self, decision: InterruptDecision) -> None:
        if self.state is not ConversationState.AWAITING_DECISION or self.pending is None:
            raise TurnInProgressError("No interrupt is awaiting a decision.", conversation_id=self.conversation_id)

        # Raises DecisionValidationError before any state change.
        fields = encode_decision(decision)

        # The interrupted exchange may still be draining; only one exchange runs at a time.
        await self._close_exchange()
        if self.state is not ConversationState.AWAITING_DECISION or self.pending is None:
            raise TurnInProgressError("The interrupt was cancelled before the decision was sent.", conversation_id=self.conversation_id)

        self.pending.decision = decision
        self.pending = None
        self.transcript.append(
            TranscriptEntry(
                entry_id=decision_entry_id(),
                role="user",
                content=render_decision_summary(fields),
                timestamp=_now_iso(),
                finalized=True,
            )
        )
        turn = self.active_turn
        if turn is not None:
            turn.status = TurnStatus.OPEN
        self._enter_turn_open()
        await self._run_exchange(ResumePayload(fields=fields))

    def cancel(self) -> None:
        stream = self._active
        if stream is not None:
            stream.cancel()
        if self.state is ConversationState.IDLE:
            return
        logger.info("Turn cancelled in state %s", self.state.value)
        self._settle()

    def _enter_turn_open(self) -> None:
        self.state = ConversationState.TURN_OPEN
        self._saw_chunk = False
        self._notify()

    async def _close_exchange(self) -> None:
        stream = self._active
        if stream is not None:
            stream.cancel()
        done = self._exchange_done
        if done is not None:
            await done.wait()

    async def _run_exchange(self, payload: TurnPayload) -> None:
        if self.conversation_id is None:
            self._settle()
            raise RuntimeError("Conversation id was not allocated.")

        done = asyncio.Event()
        self._exchange_done = done
        try:
            await self._drive_exchange(self.conversation_id, payload)
        except TransportError as e:
            self._fail(e)
            raise
        except BaseException:
            if self.state is not ConversationState.IDLE:
                logger.exception("Turn aborted by an unexpected error")
                self._settle()
            raise
        finally:
            done.set()

    async def _drive_exchange(self, conversation_id: str, payload: TurnPayload) -> None:
        stream = await self._transport.open_turn(conversation_id, payload)
        if self.state is not ConversationState.TURN_OPEN:
            # Cancelled while the exchange was being opened.
            await stream.aclose()
            return

        self._active = stream
        try:
            async for event in stream:
                if self._active is not stream:
                    break
                if isinstance(event, AssistantChunk):
                    self._on_chunk(event)
                elif isinstance(event, InterruptRequest):
                    self._on_interrupt(event)
                elif isinstance(event, TurnEnded):
                    self._on_turn_ended()
        finally:
            if self._active is stream:
                self._active = None
            await stream.aclose()

    def _on_chunk(self, event: AssistantChunk) -> None:
        if self.state is not ConversationState.TURN_OPEN:
            logger.debug("Ignoring assistant chunk in state %s", self.state.value)
            return
        self._saw_chunk = True
        last = self.transcript[-1] if self.transcript else None
        if last is not None and last.role == "assistant" and not last.finalized:
            last.content = f"{last.content}{MESSAGE_SEPARATOR}{event.text}" if last.content else event.text
        else:
            entry = TranscriptEntry(entry_id=entry_id("assistant"), role="assistant", content=event.text, timestamp=_now_iso())
            self.transcript.append(entry)
            turn = self.active_turn
            if turn is not None:
                turn.messages.append(entry)
        self._notify()

    def _on_interrupt(self, event: InterruptRequest) -> None:
        if self.state is not ConversationState.TURN_OPEN:
            logger.warning("Ignoring extra interrupt in state %s", self.state.value)
            return
        self._finalize_message()
        round_ = DecisionRound(draft=event.draft, payload=event.payload)
        self.pending = round_
        turn = self.active_turn
        if turn is not None:
            turn.rounds.append(round_)
            turn.status = TurnStatus.AWAITING_DECISION
        self.state = ConversationState.AWAITING_DECISION
        logger.info("Turn awaiting decision on draft to %s", ", ".join(event.draft.to) or "(no recipients)")
        self._notify()

    def _on_turn_ended(self) -> None:
        if self.state is ConversationState.TURN_OPEN:
            self._settle()

    def _fail(self, error: TransportError) -> None:
        logger.warning("Turn failed: %s", error)
        self.last_error = error
        self._settle()

    def _settle(self) -> None:
        self._finalize_message()
        self.pending = None
        turn = self.active_turn
        if turn is not None:
            turn.status = TurnStatus.CLOSED
        self.state = ConversationState.IDLE
        self._saw_chunk = False
        self._notify()

    def _finalize_message(self) -> None:
        last = self.transcript[-1] if self.transcript else None
        if last is not None and last.role == "assistant":
            last.finalized = True

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
