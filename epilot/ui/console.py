from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from ..runtime.conversation import Conversation, ConversationState, TranscriptEntry
from ..runtime.models import DraftEmail

THINKING_STEPS = (
    "E-pilot is collecting data...",
    "E-pilot is reasoning...",
    "E-pilot is generating...",
)
THINKING_INTERVAL_S = 1.5


class ThinkingIndicator:
    """
    Rotating status line shown while a turn is open and no text has arrived yet.

    The rotation task lives only as long as the conversation reports `thinking`.
    """

    def __init__(self, *, stream: TextIO | None = None, interval_s: float = THINKING_INTERVAL_S) -> None:
        self._stream = stream if stream is not None else sys.stderr
        self._ansi = bool(getattr(self._stream, "isatty", lambda: False)())
        self._interval_s = interval_s
        self._task: asyncio.Task[None] | None = None
        self.step = 0

    @property
    def active(self) -> bool:
        return self._task is not None

    @property
    def label(self) -> str:
        return THINKING_STEPS[self.step % len(THINKING_STEPS)]

    def sync(self, conversation: Conversation) -> None:
        if conversation.thinking:
            self.start()
        else:
            self.stop()

    def start(self) -> None:
        if self._task is not None:
            return
        self.step = 0
        self._paint()
        self._task = asyncio.get_running_loop().create_task(self._rotate())

    def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        if self._ansi:
            self._stream.write("\r\x1b[2K")
            self._stream.flush()

    async def _rotate(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            self.step = (self.step + 1) % len(THINKING_STEPS)
            self._paint()

    def _paint(self) -> None:
        if self._ansi:
            self._stream.write("\r\x1b[2K" + self.label)
        else:
            self._stream.write(self.label + "\n")
        self._stream.flush()


def format_draft(draft: DraftEmail) -> str:
    lines = ["Email approval required", f"To: {', '.join(draft.to) or '-'}"]
    if draft.cc:
        lines.append(f"CC: {', '.join(draft.cc)}")
    lines.append(f"Subject: {draft.subject}")
    lines.append(f"HTML: {'yes' if draft.is_html else 'no'}")
    lines.append("")
    lines.append(draft.body)
    return "\n".join(lines)


class TranscriptPrinter:
    """Writes transcript growth to a stream as assistant text streams in."""

    def __init__(self, *, stream: TextIO | None = None, echo_user: bool = False) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._echo_user = echo_user
        self._printed: dict[str, int] = {}
        self._open_entry: str | None = None

    def render_entry(self, entry: TranscriptEntry) -> None:
        prefix = "you" if entry.role == "user" else "e-pilot"
        self._stream.write(f"[{prefix}] {entry.content}\n\n")
        self._printed[entry.entry_id] = len(entry.content)

    def update(self, conversation: Conversation) -> None:
        for entry in conversation.transcript:
            done = self._printed.get(entry.entry_id)
            if entry.role == "user":
                if done is None:
                    self._printed[entry.entry_id] = len(entry.content)
                    if self._echo_user:
                        self.render_entry(entry)
                continue
            if done is None:
                self._close_open_entry()
                self._stream.write("[e-pilot] ")
                done = 0
                self._open_entry = entry.entry_id
            if len(entry.content) > done:
                self._stream.write(entry.content[done:])
                self._printed[entry.entry_id] = len(entry.content)
            if entry.finalized and self._open_entry == entry.entry_id:
                self._close_open_entry()
        if conversation.state is ConversationState.IDLE:
            self._close_open_entry()
        self._stream.flush()

    def _close_open_entry(self) -> None:
        if self._open_entry is not None:
            self._stream.write("\n\n")
            self._open_entry = None
