from __future__ import annotations

import asyncio
import random

from epilot.runtime.stream import DropStats, FrameDecoder, adecode_frames, decode_frames


STREAM = (
    b": comment\n"
    b'data: {"type":"message","message":{"role":"assistant","content":"caf\xc3\xa9 \xe2\x9c\x93"}}\n'
    b"\n"
    b"keepalive\n"
    b"data: \n"
    b'  data:{"type":"interrupt"}  \r\n'
    b"data: tail-without-newline"
)

EXPECTED = [
    '{"type":"message","message":{"role":"assistant","content":"café ✓"}}',
    '{"type":"interrupt"}',
]


def _partition(data: bytes, cuts: list[int]) -> list[bytes]:
    bounds = [0, *sorted(cuts), len(data)]
    return [data[a:b] for a, b in zip(bounds, bounds[1:])]


def test_single_fragment_yields_records_in_order() -> None:
    assert list(decode_frames([STREAM])) == EXPECTED


def test_every_two_way_split_is_equivalent() -> None:
    for cut in range(len(STREAM) + 1):
        assert list(decode_frames(_partition(STREAM, [cut]))) == EXPECTED, cut


def test_random_partitions_are_equivalent() -> None:
    rng = random.Random(1234)
    for _ in range(200):
        n_cuts = rng.randint(1, 25)
        cuts = [rng.randint(0, len(STREAM)) for _ in range(n_cuts)]
        assert list(decode_frames(_partition(STREAM, cuts))) == EXPECTED


def test_byte_at_a_time_decodes_multibyte_characters() -> None:
    fragments = [STREAM[i : i + 1] for i in range(len(STREAM))]
    assert list(decode_frames(fragments)) == EXPECTED


def test_text_fragments_are_accepted() -> None:
    text = STREAM.decode("utf-8")
    fragments = [text[i : i + 3] for i in range(0, len(text), 3)]
    assert list(decode_frames(fragments)) == EXPECTED


def test_record_split_exactly_at_newline_is_emitted_once() -> None:
    decoder = FrameDecoder()
    assert decoder.feed(b"data: abc") == []
    assert decoder.feed(b"\n") == ["abc"]
    assert decoder.feed(b"") == []
    assert decoder.pending == ""


def test_multiple_records_in_one_fragment() -> None:
    decoder = FrameDecoder()
    assert decoder.feed("data: 1\ndata: 2\ndata: 3") == ["1", "2"]
    assert decoder.pending == "data: 3"
    assert decoder.feed("\n") == ["3"]


def test_marker_filtering_and_empty_payloads() -> None:
    stats = DropStats()
    decoder = FrameDecoder(stats=stats)
    assert decoder.feed(b"keepalive\n") == []
    assert decoder.feed(b"data: \n") == []
    assert decoder.feed(b"data:\n") == []
    assert decoder.feed(b"\n") == []
    assert stats.noise_lines == 2
    assert stats.empty_payloads == 2


def test_unterminated_tail_is_never_emitted() -> None:
    records = list(decode_frames([b'data: {"type":"message"}']))
    assert records == []


def test_async_decoding_matches_sync() -> None:
    async def fragments():
        for i in range(0, len(STREAM), 5):
            await asyncio.sleep(0)
            yield STREAM[i : i + 5]

    async def collect() -> list[str]:
        return [record async for record in adecode_frames(fragments())]

    assert asyncio.run(collect()) == EXPECTED
