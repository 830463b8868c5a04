"""Gemini generateContent / streamGenerateContent adapter."""

from __future__ import annotations

from typing import Any

from polychat.services.chat_models import ChatRequest

from .base import IGNORE, ContentDelta, ProviderAdapter, StreamError, StreamEvent, extract_error_message, get_text

_TEXT_PATH = ("candidates", 0, "content", "parts", 0, "text")


class GeminiGenerateContentAdapter(ProviderAdapter):
    """Frames report the cumulative text; there is no explicit end marker."""

    dialect = "gemini.generate_content"
    result_paths = (_TEXT_PATH,)

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        params = request.parameters
        generation_config = self.optional_params(
            temperature=params.temperature,
            maxOutputTokens=params.max_tokens,
            topP=params.top_p,
        )
        generation_config.update({k: v for k, v in params.extra.items() if v is not None})

        payload: dict[str, Any] = {
            "contents": [
                {"role": "model" if msg.role == "assistant" else "user", "parts": [{"text": msg.content}]}
                for msg in request.chat_messages
            ],
            "generationConfig": generation_config,
        }
        system = request.system_message
        if system is not None:
            payload["systemInstruction"] = {"parts": [{"text": system.content}]}
        return payload

    def parse_payload(self, obj: dict[str, Any]) -> StreamEvent:
        message = extract_error_message(obj)
        if message:
            return StreamError(message)
        text = get_text(obj, _TEXT_PATH)
        if text:
            return ContentDelta(text, cumulative=True)
        return IGNORE
