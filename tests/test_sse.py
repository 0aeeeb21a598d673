from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from backend.sse import iter_sse_events, iter_sse_lines


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


async def _collect(iterator: AsyncIterator[object]) -> list[object]:
    return [item async for item in iterator]


def test_lines_split_across_chunks_and_multibyte() -> None:
    encoded = "héllo\r\nwörld".encode()
    lines = asyncio.run(_collect(iter_sse_lines(_chunks(encoded[:2], encoded[2:9], encoded[9:]))))
    assert lines == ["héllo", "wörld"]


def test_events_are_decoded_per_frame() -> None:
    stream = _chunks(
        b": keep-alive\n\n",
        b'data: {"type": "session.idle",\n',
        b'data: "properties": {"sessionID": "s1"}}\n\n',
        b"data: not json\n\n",
        b"data: [1, 2]\n\n",
        b'data: {"type": "tail"}',
    )
    events = asyncio.run(_collect(iter_sse_events(stream)))
    assert events == [
        {"type": "session.idle", "properties": {"sessionID": "s1"}},
        {"type": "tail"},
    ]


def test_event_and_id_fields_are_ignored() -> None:
    stream = _chunks(b'event: message\nid: 7\ndata:{"type": "x"}\n\n')
    assert asyncio.run(_collect(iter_sse_events(stream))) == [{"type": "x"}]
