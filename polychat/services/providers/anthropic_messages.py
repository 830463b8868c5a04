"""Anthropic Messages adapter."""

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
    get_text,
)

# Anthropic 要求 max_tokens 必填
_FALLBACK_MAX_TOKENS = 2000


class AnthropicMessagesAdapter(ProviderAdapter):
    dialect = "anthropic.messages"
    result_paths = (("content", 0, "text"),)

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        params = request.parameters
        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": params.max_tokens or _FALLBACK_MAX_TOKENS,
            "messages": [
                {"role": "assistant" if msg.role == "assistant" else "user", "content": msg.content}
                for msg in request.chat_messages
            ],
            "stream": request.streaming,
        }
        payload.update(self.optional_params(temperature=params.temperature, top_p=params.top_p))
        payload.update({k: v for k, v in params.extra.items() if k not in payload and v is not None})

        system = request.system_message
        if system is not None:
            payload["system"] = system.content
        return payload

    def parse_payload(self, obj: dict[str, Any]) -> StreamEvent:
        event_type = obj.get("type")
        if event_type == "error" or obj.get("error"):
            return StreamError(extract_error_message(obj) or "upstream_error")

        if event_type == "content_block_delta":
            text = get_text(obj, ("delta", "text"))
            return ContentDelta(text) if text else IGNORE

        if event_type == "message_stop":
            return STREAM_DONE

        # message_start / content_block_start / ping / message_delta ...
        return IGNORE
