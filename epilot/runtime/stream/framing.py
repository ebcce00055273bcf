from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


@dataclass(slots=True)
class DropStats:
    """Counters for input the decoder and classifier discard without surfacing."""

    noise_lines: int = 0
    empty_payloads: int = 0
    malformed_records: int = 0
    unknown_kinds: int = 0

    @property
    def total(self) -> int:
        return self.noise_lines + self.empty_payloads + self.malformed_records + self.unknown_kinds


class FrameDecoder:
    """
    Incremental decoder for `data:`-framed, newline-separated stream bodies.

    Fragments may split a line (or a multi-byte character) anywhere. A record is
    emitted only once its terminating newline has arrived, so feeding the same
    bytes through any partition yields the same records.
    """

    def __init__(self, *, stats: DropStats | None = None) -> None:
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.stats = stats if stats is not None else DropStats()

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, fragment: bytes | str) -> list[str]:
        if isinstance(fragment, (bytes, bytearray)):
            text = self._utf8.decode(bytes(fragment))
        else:
            text = fragment
        if not text:
            return []

        self._buffer += text
        records: list[str] = []
        while True:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break
            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1 :]
            payload = self._extract_payload(line)
            if payload is not None:
                records.append(payload)
        return records

    def _extract_payload(self, line: str) -> str | None:
        s = line.strip()
        if not s.startswith(DATA_PREFIX):
            self.stats.noise_lines += 1
            return None
        payload = s[len(DATA_PREFIX) :].strip()
        if not payload:
            self.stats.empty_payloads += 1
            return None
        return payload

    def close(self) -> None:
        # An unterminated tail never becomes a record.
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        if tail.strip():
            logger.debug("Discarding %d chars of unterminated stream tail", len(tail))


def decode_frames(fragments: Iterable[bytes | str], *, stats: DropStats | None = None) -> Iterator[str]:
    decoder = FrameDecoder(stats=stats)
    for fragment in fragments:
        yield from decoder.feed(fragment)
    decoder.close()


async def adecode_frames(
    fragments: AsyncIterable[bytes | str],
    *,
    stats: DropStats | None = None,
) -> AsyncIterator[str]:
    decoder = FrameDecoder(stats=stats)
    async for fragment in fragments:
        for record in decoder.feed(fragment):
            yield record
    decoder.close()
