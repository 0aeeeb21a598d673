from __future__ import annotations

import codecs
from collections.abc import AsyncIterable, AsyncIterator

from shared.models import JSONValue
from shared.sanitize import safe_json_loads


async def iter_sse_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Split a byte stream into text lines without a per-line size limit."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    async for chunk in chunks:
        pending += decoder.decode(chunk)
        while "\n" in pending:
            line, pending = pending.split("\n", 1)
            yield line.rstrip("\r")
    pending += decoder.decode(b"", final=True)
    if pending:
        yield pending.rstrip("\r")


async def iter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[dict[str, JSONValue]]:
    """Yield the JSON object carried by each server-sent event.

    Multi-line ``data:`` fields are joined as the SSE format requires. Frames
    that are not JSON objects are skipped; the stream itself keeps going.
    """
    data_lines: list[str] = []
    async for line in iter_sse_lines(chunks):
        if not line:
            if data_lines:
                parsed = safe_json_loads("\n".join(data_lines))
                data_lines = []
                if isinstance(parsed, dict):
                    yield parsed
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line.removeprefix("data:").removeprefix(" "))
    if data_lines:
        parsed = safe_json_loads("\n".join(data_lines))
        if isinstance(parsed, dict):
            yield parsed
