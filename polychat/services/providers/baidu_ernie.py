"""Baidu ERNIE adapter (OpenAI-style framing after an access-token exchange)."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlencode

from polychat.core.errors import ConfigurationError, StreamTransportError, TokenExchangeError
from polychat.services.chat_models import ChatRequest, UpstreamRequest
from polychat.services.transport import UpstreamTransport

from .base import IGNORE, STREAM_DONE, ContentDelta, StreamEvent, get_text
from .openai_chat_completions import OpenAIChatCompletionsAdapter

logger = logging.getLogger(__name__)


class BaiduErnieAdapter(OpenAIChatCompletionsAdapter):
    """Accepts both OpenAI `choices[0].delta.content` frames and ERNIE's native
    `{"result": ..., "is_end": ...}` frames."""

    dialect = "baidu.ernie"
    result_paths = (("result",), ("choices", 0, "message", "content"))

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        params = request.parameters
        payload: dict[str, Any] = {
            "messages": self.inline_messages(request.chat_messages),
            "stream": request.streaming,
        }
        payload.update(
            self.optional_params(
                temperature=params.temperature,
                max_output_tokens=params.max_tokens,
                top_p=params.top_p,
            )
        )
        payload.update({k: v for k, v in params.extra.items() if k not in payload and v is not None})

        # ERNIE 的 messages 不接受 system 角色，使用独立 system 字段
        system = request.system_message
        if system is not None:
            payload["system"] = system.content
        return payload

    def parse_payload(self, obj: dict[str, Any]) -> StreamEvent:
        event = super().parse_payload(obj)
        if event is not IGNORE:
            return event

        is_end = obj.get("is_end") is True
        text = get_text(obj, ("result",))
        if text:
            return ContentDelta(text, finish=is_end)
        return STREAM_DONE if is_end else IGNORE


async def fetch_access_token(
    transport: UpstreamTransport,
    *,
    token_url: str,
    api_key: str,
    secret_key: str,
) -> str:
    """POST /oauth/2.0/token?grant_type=client_credentials&client_id=..&client_secret=..

    Runs to completion before the chat URL is built; any failure is a
    TokenExchangeError and the chat call is never attempted.
    """

    if not api_key or not secret_key:
        raise ConfigurationError("Baidu requires both apiKey and secretKey")

    query = urlencode(
        {
            "grant_type": "client_credentials",
            "client_id": api_key,
            "client_secret": secret_key,
        }
    )
    request = UpstreamRequest(
        url=f"{token_url}?{query}",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        body={},
    )

    try:
        response = await transport.post(request)
    except StreamTransportError as exc:
        logger.warning("[TOKEN_EXCHANGE_FAILED] reason=transport error=%s", exc.message)
        raise TokenExchangeError(f"failed to obtain Baidu access token: {exc.message}") from exc

    try:
        data = json.loads(response.content) if response.content else None
    except ValueError:
        data = None

    token = data.get("access_token") if isinstance(data, dict) else None
    if response.ok and isinstance(token, str) and token.strip():
        return token.strip()

    detail = ""
    if isinstance(data, dict):
        for field in ("error_description", "error_msg", "error"):
            value = data.get(field)
            if isinstance(value, str) and value.strip():
                detail = value.strip()
                break
    if not detail:
        detail = f"HTTP {response.status_code}: {response.reason_phrase}"
    logger.warning("[TOKEN_EXCHANGE_FAILED] status=%s detail=%s", response.status_code, detail)
    raise TokenExchangeError(f"failed to obtain Baidu access token: {detail}")
