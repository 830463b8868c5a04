"""OpenAI Chat Completions adapter (OpenAI / Zhipu / custom compatible endpoints)."""

from __future__ import annotations

from typing import Any

from polychat.services.chat_models import ChatRequest

from .base import IGNORE, ContentDelta, ProviderAdapter, StreamError, StreamEvent, extract_error_message, get_text

# 透传参数不允许覆盖这些由服务端决定的字段
_RESERVED_KEYS = frozenset({"model", "messages", "stream"})


class OpenAIChatCompletionsAdapter(ProviderAdapter):
    dialect = "openai.chat_completions"
    result_paths = (("choices", 0, "message", "content"),)

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        params = request.parameters
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": self.inline_messages(request.messages),
            "stream": request.streaming,
        }
        payload.update(
            self.optional_params(
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                top_p=params.top_p,
            )
        )
        payload.update({k: v for k, v in params.extra.items() if k not in _RESERVED_KEYS and v is not None})
        return payload

    def parse_payload(self, obj: dict[str, Any]) -> StreamEvent:
        message = extract_error_message(obj)
        if message:
            return StreamError(message)

        choices = obj.get("choices")
        if not isinstance(choices, list) or not choices:
            # usage-only / keep-alive 帧
            return IGNORE

        text = get_text(obj, ("choices", 0, "delta", "content"))
        if text:
            return ContentDelta(text)
        # role-only delta、tool_calls、finish_reason 帧
        return IGNORE
