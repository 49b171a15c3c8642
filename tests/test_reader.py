from __future__ import annotations

from typing import AsyncIterator, Iterable

import pytest

from multimodal_chat.streaming.reader import EventStreamReader, parse_event_payload
from multimodal_chat.streaming.wire import delta_event, done_event, encode_event

HEL = 'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
LO = 'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
DONE = "data: [DONE]\n\n"
DEEP = "[" * 200_000 + "]" * 200_000


class ChunkSource:
    def __init__(self, chunks: Iterable[bytes | str]) -> None:
        self._chunks = list(chunks)
        self.consumed = 0
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes | str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes | str]:
        for chunk in self._chunks:
            self.consumed += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


async def collect(chunks: Iterable[bytes | str]) -> list[str]:
    return [text async for text in EventStreamReader(ChunkSource(chunks))]


@pytest.mark.asyncio
async def test_reassembles_deltas_across_two_chunks() -> None:
    assert await collect([HEL, LO + DONE]) == ["Hel", "lo"]


@pytest.mark.asyncio
@pytest.mark.parametrize("split_at", range(1, len(HEL + LO + DONE)))
async def test_split_position_does_not_change_output(split_at: int) -> None:
    stream = (HEL + LO + DONE).encode("utf-8")
    assert await collect([stream[:split_at], stream[split_at:]]) == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_byte_at_a_time_with_multibyte_characters() -> None:
    stream = encode_event(delta_event("héllo ✓")) + DONE
    chunks = [bytes([b]) for b in stream.encode("utf-8")]
    assert await collect(chunks) == ["héllo ✓"]


@pytest.mark.asyncio
async def test_crlf_separators_are_tolerated() -> None:
    stream = HEL.replace("\n", "\r\n") + LO.replace("\n", "\r\n") + "data: [DONE]\r\n\r\n"
    assert await collect([stream]) == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_stops_at_done_without_reading_further() -> None:
    source = ChunkSource([HEL + DONE, LO])
    reader = EventStreamReader(source)

    deltas = [text async for text in reader]

    assert deltas == ["Hel"]
    assert reader.finished
    assert source.consumed == 1
    assert source.closed


@pytest.mark.asyncio
async def test_flushes_trailing_fragment_once() -> None:
    trailing = 'data: {"choices":[{"delta":{"content":"tail"}}]}'
    assert await collect([HEL, trailing]) == ["Hel", "tail"]


@pytest.mark.asyncio
async def test_trailing_done_fragment_is_not_surfaced() -> None:
    assert await collect([HEL, "data: [DONE]"]) == ["Hel"]


@pytest.mark.asyncio
async def test_multi_line_data_is_joined_before_parsing() -> None:
    event = 'data: {"choices":\ndata: [{"delta":{"content":"joined"}}]}\n\n'
    assert await collect([event, DONE]) == ["joined"]


@pytest.mark.asyncio
async def test_non_json_payload_is_used_verbatim() -> None:
    assert await collect(["data: plain words\n\n", DONE]) == ["plain words"]


@pytest.mark.asyncio
async def test_empty_and_comment_events_are_skipped() -> None:
    stream = ": keep-alive\n\n" + "data:\n\n" + "event: ping\n\n" + HEL + DONE
    assert await collect([stream]) == ["Hel"]


@pytest.mark.asyncio
async def test_events_without_text_are_skipped() -> None:
    finish = 'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
    assert await collect([HEL, finish, LO, DONE]) == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_server_encoded_events_round_trip() -> None:
    stream = "".join(encode_event(e) for e in (delta_event("a"), delta_event("b"), done_event()))
    assert await collect([stream]) == ["a", "b"]


def test_parse_event_payload_strips_one_optional_space() -> None:
    assert parse_event_payload("data:  two spaces") == " two spaces"
    assert parse_event_payload("data:nospace") == "nospace"
    assert parse_event_payload("id: 1\nevent: x\ndata: a\ndata: b") == "a\nb"


@pytest.mark.asyncio
async def test_deeply_nested_payload_is_kept_as_text_and_stream_continues() -> None:
    deltas = await collect([HEL, f"data: {DEEP}\n\n", LO, DONE])

    assert deltas == ["Hel", DEEP, "lo"]
