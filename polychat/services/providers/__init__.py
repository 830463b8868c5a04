"""Upstream provider adapters (dialect -> request builder + SSE line parser)."""

from __future__ import annotations

from polychat.core.errors import UnsupportedProviderError
from polychat.services.llm_catalog import LlmDialect

from .anthropic_messages import AnthropicMessagesAdapter
from .baidu_ernie import BaiduErnieAdapter, fetch_access_token
from .base import IGNORE, STREAM_DONE, ContentDelta, ProviderAdapter, StreamDone, StreamError, StreamEvent
from .dashscope_generation import DashScopeGenerationAdapter
from .gemini_generate_content import GeminiGenerateContentAdapter
from .openai_chat_completions import OpenAIChatCompletionsAdapter

# adapter 无状态，进程内共享
_ADAPTERS: dict[str, ProviderAdapter] = {
    "openai.chat_completions": OpenAIChatCompletionsAdapter(),
    "anthropic.messages": AnthropicMessagesAdapter(),
    "gemini.generate_content": GeminiGenerateContentAdapter(),
    "dashscope.generation": DashScopeGenerationAdapter(),
    "baidu.ernie": BaiduErnieAdapter(),
}


def get_provider_adapter(dialect: LlmDialect) -> ProviderAdapter:
    adapter = _ADAPTERS.get(dialect)
    if adapter is None:
        raise UnsupportedProviderError(f"unsupported_dialect:{dialect}")
    return adapter


__all__ = [
    "AnthropicMessagesAdapter",
    "BaiduErnieAdapter",
    "ContentDelta",
    "DashScopeGenerationAdapter",
    "GeminiGenerateContentAdapter",
    "IGNORE",
    "OpenAIChatCompletionsAdapter",
    "ProviderAdapter",
    "STREAM_DONE",
    "StreamDone",
    "StreamError",
    "StreamEvent",
    "fetch_access_token",
    "get_provider_adapter",
]
