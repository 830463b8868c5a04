from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from polychat.services.providers.sse import LineDecoder, iter_lines, iter_lines_sync, strip_data_prefix

_BODY = 'data: {"text":"你好，世界"}\n\ndata: {"text":"🙂 ok"}\n\ndata: [DONE]\n'.encode("utf-8")


def _split_at(data: bytes, *offsets: int) -> list[bytes]:
    chunks: list[bytes] = []
    start = 0
    for offset in offsets:
        chunks.append(data[start:offset])
        start = offset
    chunks.append(data[start:])
    return chunks


def test_lines_independent_of_chunk_boundaries():
    expected = list(iter_lines_sync([_BODY]))
    assert expected == ['data: {"text":"你好，世界"}', "", 'data: {"text":"🙂 ok"}', "", "data: [DONE]"]

    for offset in range(len(_BODY) + 1):
        assert list(iter_lines_sync(_split_at(_BODY, offset))) == expected, offset


def test_lines_independent_of_two_split_points():
    expected = list(iter_lines_sync([_BODY]))
    for first in range(0, len(_BODY), 3):
        for second in range(first, len(_BODY), 5):
            assert list(iter_lines_sync(_split_at(_BODY, first, second))) == expected


def test_single_byte_chunks_keep_multibyte_characters():
    chunks = [bytes([b]) for b in _BODY]
    assert list(iter_lines_sync(chunks)) == list(iter_lines_sync([_BODY]))


def test_pending_partial_line_is_flushed_at_end_of_body():
    decoder = LineDecoder()
    assert decoder.feed(b"data: a\ndata: b") == ["data: a"]
    assert decoder.feed(b"") == []
    assert decoder.flush() == "data: b"
    assert decoder.flush() is None


def test_empty_body_yields_no_lines():
    assert list(iter_lines_sync([])) == []
    assert list(iter_lines_sync([b"", b""])) == []


@pytest.mark.asyncio
async def test_async_iter_lines_matches_sync():
    async def chunks() -> AsyncIterator[bytes]:
        for chunk in _split_at(_BODY, 7, 8, 9, 30):
            yield chunk

    lines = [line async for line in iter_lines(chunks())]
    assert lines == list(iter_lines_sync([_BODY]))


def test_strip_data_prefix():
    assert strip_data_prefix('data: {"a":1}') == '{"a":1}'
    assert strip_data_prefix("  data: [DONE]\r") == "[DONE]"
    assert strip_data_prefix("event: ping") is None
    assert strip_data_prefix("") is None
    assert strip_data_prefix('data:{"a":1}', prefix="data:") == '{"a":1}'
    assert strip_data_prefix('data:{"a":1}') is None
