"""Qwen / DashScope text-generation adapter."""

from __future__ import annotations

from typing import Any

from polychat.services.chat_models import ChatRequest

from .base import (
    IGNORE,
    STREAM_DONE,
    ContentDelta,
    ProviderAdapter,
    StreamError,
    StreamEvent,
    extract_error_message,
    get_path,
    get_text,
)

_OUTPUT_TEXT = ("output", "text")
_OUTPUT_MESSAGE = ("output", "choices", 0, "message", "content")
_OPENAI_DELTA = ("choices", 0, "delta", "content")


class DashScopeGenerationAdapter(ProviderAdapter):
    """DashScope SSE: `data:` without a mandatory space.

    With incremental_output disabled, `output.text` is the cumulative text so
    far; some gateways answer in OpenAI delta shape instead, which is accepted
    too.
    """

    dialect = "dashscope.generation"
    data_prefix = "data:"
    result_paths = (_OUTPUT_TEXT, _OUTPUT_MESSAGE)

    def extra_headers(self, request: ChatRequest) -> dict[str, str]:
        return {"X-DashScope-SSE": "enable"} if request.streaming else {}

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        params = request.parameters
        parameters = self.optional_params(
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            top_p=params.top_p,
        )
        parameters.update({k: v for k, v in params.extra.items() if v is not None})
        # 流式归一化按“累计文本”处理 output.text
        parameters["incremental_output"] = False
        return {
            "model": request.model,
            "input": {"messages": self.inline_messages(request.messages)},
            "parameters": parameters,
        }

    def parse_payload(self, obj: dict[str, Any]) -> StreamEvent:
        message = extract_error_message(obj)
        if message:
            return StreamError(message)

        finish = "stop" in (
            get_path(obj, ("output", "finish_reason")),
            get_path(obj, ("output", "choices", 0, "finish_reason")),
            get_path(obj, ("choices", 0, "finish_reason")),
        )

        delta = get_text(obj, _OPENAI_DELTA)
        if delta:
            return ContentDelta(delta, finish=finish)

        text = get_text(obj, _OUTPUT_TEXT) or get_text(obj, _OUTPUT_MESSAGE)
        if text:
            return ContentDelta(text, cumulative=True, finish=finish)

        return STREAM_DONE if finish else IGNORE
