from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from polychat.core.errors import StreamCancelledError, UpstreamHTTPError
from polychat.services.chat_models import Completed, Failed, NormalizedIncrement
from polychat.services.providers import (
    AnthropicMessagesAdapter,
    DashScopeGenerationAdapter,
    GeminiGenerateContentAdapter,
    OpenAIChatCompletionsAdapter,
)
from polychat.services.providers.base import STREAM_DONE, ContentDelta, StreamError
from polychat.services.stream_normalizer import StreamNormalizer


async def _lines(items: list[str]) -> AsyncIterator[str]:
    for item in items:
        yield item


class _Recorder:
    def __init__(self) -> None:
        self.increments: list[NormalizedIncrement] = []
        self.outcomes: list[object] = []

    def on_increment(self, increment: NormalizedIncrement) -> None:
        self.increments.append(increment)

    async def on_outcome(self, outcome) -> None:
        self.outcomes.append(outcome)

    def normalizer(self, parse_line) -> StreamNormalizer:
        return StreamNormalizer(parse_line, on_increment=self.on_increment, on_outcome=self.on_outcome)


def _assert_prefix_chain(increments: list[NormalizedIncrement]) -> None:
    previous = ""
    for increment in increments:
        assert increment.delta_text
        assert increment.cumulative_text == previous + increment.delta_text
        previous = increment.cumulative_text


@pytest.mark.asyncio
async def test_openai_delta_stream_completes_with_concatenation():
    recorder = _Recorder()
    normalizer = recorder.normalizer(OpenAIChatCompletionsAdapter().parse_line)

    outcome = await normalizer.run(
        _lines(
            [
                'data: {"choices":[{"delta":{"role":"assistant"}}]}',
                "",
                'data: {"choices":[{"delta":{"content":"Hel"}}]}',
                "",
                'data: {"choices":[{"delta":{"content":"lo"}}]}',
                "",
                "data: [DONE]",
                "",
            ]
        )
    )

    assert outcome == Completed("Hello")
    assert [i.delta_text for i in recorder.increments] == ["Hel", "lo"]
    assert [i.cumulative_text for i in recorder.increments] == ["Hel", "Hello"]
    assert recorder.outcomes == [Completed("Hello")]


@pytest.mark.asyncio
async def test_gemini_cumulative_stream_completes_at_end_of_body():
    recorder = _Recorder()
    normalizer = recorder.normalizer(GeminiGenerateContentAdapter().parse_line)

    def frame(text: str) -> str:
        return 'data: {"candidates":[{"content":{"parts":[{"text":"%s"}]}}]}' % text

    outcome = await normalizer.run(_lines([frame("Hel"), "", frame("Hello"), "", frame("Hello"), ""]))

    assert outcome == Completed("Hello")
    # 重复的累计帧不产生空增量
    assert recorder.increments == [NormalizedIncrement("Hel", "Hel"), NormalizedIncrement("lo", "Hello")]
    assert recorder.outcomes == [Completed("Hello")]


@pytest.mark.asyncio
async def test_anthropic_ignores_non_content_events():
    recorder = _Recorder()
    normalizer = recorder.normalizer(AnthropicMessagesAdapter().parse_line)

    outcome = await normalizer.run(
        _lines(
            [
                "event: message_start",
                'data: {"type":"message_start","message":{"id":"m1"}}',
                "",
                "event: ping",
                'data: {"type":"ping"}',
                "",
                'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"Hi"}}',
                "",
                'data: {"type":"message_delta","delta":{"stop_reason":"end_turn"}}',
                "",
                'data: {"type":"message_stop"}',
                "",
                'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"late"}}',
            ]
        )
    )

    assert outcome == Completed("Hi")
    assert [i.delta_text for i in recorder.increments] == ["Hi"]


@pytest.mark.asyncio
async def test_qwen_finish_frame_emits_last_text_then_completes():
    recorder = _Recorder()
    normalizer = recorder.normalizer(DashScopeGenerationAdapter().parse_line)

    outcome = await normalizer.run(
        _lines(
            [
                "id:1",
                "event:result",
                'data:{"output":{"text":"你","finish_reason":"null"}}',
                "",
                'data:{"output":{"text":"你好","finish_reason":"stop"}}',
                "",
            ]
        )
    )

    assert outcome == Completed("你好")
    assert [i.delta_text for i in recorder.increments] == ["你", "好"]


@pytest.mark.asyncio
async def test_body_without_content_completes_with_empty_text():
    recorder = _Recorder()
    normalizer = recorder.normalizer(OpenAIChatCompletionsAdapter().parse_line)

    outcome = await normalizer.run(_lines(["", ": keep-alive", ""]))

    assert outcome == Completed("")
    assert recorder.increments == []
    assert recorder.outcomes == [Completed("")]


@pytest.mark.asyncio
async def test_in_band_error_fails_after_delivered_increments():
    recorder = _Recorder()
    normalizer = recorder.normalizer(OpenAIChatCompletionsAdapter().parse_line)

    outcome = await normalizer.run(
        _lines(
            [
                'data: {"choices":[{"delta":{"content":"partial"}}]}',
                'data: {"error":{"message":"server overloaded"}}',
                'data: {"choices":[{"delta":{"content":"never"}}]}',
            ]
        )
    )

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, UpstreamHTTPError)
    assert outcome.message == "server overloaded"
    assert [i.delta_text for i in recorder.increments] == ["partial"]
    assert recorder.outcomes == [outcome]


def test_cumulative_divergence_resyncs_to_new_text():
    normalizer = StreamNormalizer(lambda line: None)  # type: ignore[arg-type, return-value]

    increment, outcome = normalizer.apply(ContentDelta("Hello world", cumulative=True))
    assert increment == NormalizedIncrement("Hello world", "Hello world")
    assert outcome is None

    # 厂商改写了前文：整段作为 delta，并以新文本为准
    increment, _ = normalizer.apply(ContentDelta("Hello there", cumulative=True))
    assert increment == NormalizedIncrement("Hello there", "Hello there")
    assert normalizer.cumulative_text == "Hello there"

    # 更短的累计文本同样重新同步
    increment, _ = normalizer.apply(ContentDelta("Hi", cumulative=True))
    assert increment == NormalizedIncrement("Hi", "Hi")


def test_mixed_delta_and_cumulative_frames():
    normalizer = StreamNormalizer(lambda line: None)  # type: ignore[arg-type, return-value]

    assert normalizer.apply(ContentDelta("ab"))[0] == NormalizedIncrement("ab", "ab")
    assert normalizer.apply(ContentDelta("abcd", cumulative=True))[0] == NormalizedIncrement("cd", "abcd")
    assert normalizer.apply(ContentDelta("e"))[0] == NormalizedIncrement("e", "abcde")
    assert normalizer.apply(ContentDelta(""))[0] is None


@pytest.mark.asyncio
async def test_outcome_is_delivered_exactly_once():
    recorder = _Recorder()
    normalizer = recorder.normalizer(OpenAIChatCompletionsAdapter().parse_line)

    first = await normalizer.finalize(Completed("x"))
    second = await normalizer.fail(UpstreamHTTPError("late"))

    assert first == second == Completed("x")
    assert recorder.outcomes == [Completed("x")]
    assert normalizer.apply(ContentDelta("more")) == (None, None)
    assert normalizer.apply(STREAM_DONE) == (None, None)
    assert normalizer.apply(StreamError("late")) == (None, None)


@pytest.mark.asyncio
async def test_cancel_event_stops_between_lines():
    recorder = _Recorder()
    cancel = asyncio.Event()
    normalizer = StreamNormalizer(
        OpenAIChatCompletionsAdapter().parse_line,
        on_increment=lambda inc: (recorder.increments.append(inc), cancel.set()),
        on_outcome=recorder.on_outcome,
    )

    outcome = await normalizer.run(
        _lines(
            [
                'data: {"choices":[{"delta":{"content":"one"}}]}',
                'data: {"choices":[{"delta":{"content":"two"}}]}',
                "data: [DONE]",
            ]
        ),
        cancel_event=cancel,
    )

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, StreamCancelledError)
    assert outcome.message == "cancelled"
    assert [i.delta_text for i in recorder.increments] == ["one"]
    assert recorder.outcomes == [outcome]


@pytest.mark.asyncio
async def test_transport_error_propagates_and_keeps_delivered_increments():
    recorder = _Recorder()
    normalizer = recorder.normalizer(OpenAIChatCompletionsAdapter().parse_line)

    async def broken() -> AsyncIterator[str]:
        yield 'data: {"choices":[{"delta":{"content":"Hel"}}]}'
        raise ConnectionResetError("peer reset")

    with pytest.raises(ConnectionResetError):
        await normalizer.run(broken())

    assert not normalizer.finished
    assert [i.delta_text for i in recorder.increments] == ["Hel"]
    assert recorder.outcomes == []


@pytest.mark.asyncio
async def test_malformed_frame_does_not_abort_stream():
    recorder = _Recorder()
    normalizer = recorder.normalizer(OpenAIChatCompletionsAdapter().parse_line)

    outcome = await normalizer.run(
        _lines(
            [
                'data: {"choices":[{"delta":{"content":"A"}}]}',
                'data: {"choices":[{"delta":{"content":',
                "data: [1, 2, 3]",
                'data: {"choices":"not-a-list"}',
                'data: {"choices":[{"delta":{"content":"B"}}]}',
                "data: [DONE]",
            ]
        )
    )

    assert outcome == Completed("AB")
    assert [i.delta_text for i in recorder.increments] == ["A", "B"]
    assert normalizer.lines == 6
