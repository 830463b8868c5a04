"""SSE frame decoding helpers (raw byte chunks -> logical lines)."""

from __future__ import annotations

import codecs
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Optional


class LineDecoder:
    """Reassemble arbitrarily split byte chunks into `\\n`-separated text lines.

    A pending partial line is carried across chunks; multi-byte UTF-8
    sequences split across chunk boundaries are decoded incrementally.
    Blank lines are passed through untouched (callers decide what they mean).
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        text = self._decoder.decode(chunk or b"")
        if not text:
            return []
        parts = (self._pending + text).split("\n")
        self._pending = parts.pop()
        return parts

    def flush(self) -> Optional[str]:
        """End of body: return the buffered partial line, if any."""

        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return tail or None


def iter_lines_sync(chunks: Iterable[bytes]) -> Iterator[str]:
    decoder = LineDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    tail = decoder.flush()
    if tail is not None:
        yield tail


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Lazy line sequence over an async byte stream (one `await` per chunk)."""

    decoder = LineDecoder()
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line
    tail = decoder.flush()
    if tail is not None:
        yield tail


def strip_data_prefix(line: str, prefix: str = "data: ") -> Optional[str]:
    """Return the payload of a `data:` line, or None for any other line."""

    text = str(line or "").strip()
    if not text.startswith(prefix):
        return None
    return text[len(prefix) :].strip()


__all__ = ["LineDecoder", "iter_lines", "iter_lines_sync", "strip_data_prefix"]
