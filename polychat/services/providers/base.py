"""Provider adapter contract + shared frame helpers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from polychat.core.errors import FrameParseError, UpstreamHTTPError
from polychat.services.ai_url import build_chat_url
from polychat.services.chat_models import ChatRequest, Message, UpstreamRequest
from polychat.services.llm_catalog import JsonPath, LlmDialect, ProviderProfile
from polychat.services.upstream_auth import build_upstream_headers

from .sse import strip_data_prefix

logger = logging.getLogger(__name__)

_ERROR_PREVIEW_CHARS = 240


@dataclass(frozen=True, slots=True)
class ContentDelta:
    """Text carried by one frame.

    cumulative: the vendor resent the full text so far instead of a delta.
    finish: the same frame also signals completion.
    """

    text: str
    cumulative: bool = False
    finish: bool = False


@dataclass(frozen=True, slots=True)
class StreamDone:
    pass


@dataclass(frozen=True, slots=True)
class StreamError:
    message: str


class _Ignore:
    __slots__ = ()

    def __repr__(self) -> str:
        return "IGNORE"


IGNORE = _Ignore()
STREAM_DONE = StreamDone()

StreamEvent = Union[ContentDelta, StreamDone, StreamError, _Ignore]


def get_path(data: Any, path: JsonPath) -> Any:
    """Walk dict keys / list indices; any mismatch yields None."""

    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def get_text(data: Any, path: JsonPath) -> str:
    value = get_path(data, path)
    return value if isinstance(value, str) else ""


def decode_frame(payload: str) -> dict[str, Any]:
    try:
        obj = json.loads(payload)
    except ValueError as exc:
        raise FrameParseError("invalid_json_frame") from exc
    if not isinstance(obj, dict):
        raise FrameParseError("frame_not_object")
    return obj


def extract_error_message(data: Any) -> Optional[str]:
    """识别各厂商 body 内的错误结构（2xx 也可能带错误）。"""

    if not isinstance(data, dict):
        return None

    err = data.get("error")
    if isinstance(err, dict):
        msg = err.get("message") or err.get("error") or err.get("type") or err.get("status")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()[:_ERROR_PREVIEW_CHARS]
        return json.dumps(err, ensure_ascii=False)[:_ERROR_PREVIEW_CHARS]
    if isinstance(err, str) and err.strip():
        return err.strip()[:_ERROR_PREVIEW_CHARS]

    # 百度：{"error_code": 110, "error_msg": "Access token invalid"}
    if data.get("error_code") is not None:
        msg = data.get("error_msg")
        text = msg.strip() if isinstance(msg, str) and msg.strip() else f"error_code={data.get('error_code')}"
        return text[:_ERROR_PREVIEW_CHARS]

    # DashScope：{"code": "InvalidApiKey", "message": "...", "request_id": "..."}
    if data.get("code") and "output" not in data:
        msg = data.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()[:_ERROR_PREVIEW_CHARS]

    return None


class ProviderAdapter:
    """One adapter per dialect: request shape + frame parser + result path."""

    dialect: LlmDialect
    data_prefix = "data: "
    done_marker = "[DONE]"
    result_paths: tuple[JsonPath, ...] = ()

    # ---- request ----

    def build_request(
        self,
        request: ChatRequest,
        profile: ProviderProfile,
        *,
        access_token: str = "",
        request_id: Optional[str] = None,
    ) -> UpstreamRequest:
        api_key = str(request.credentials.api_key or "")
        url = build_chat_url(
            profile,
            model=request.model,
            api_key=api_key,
            streaming=request.streaming,
            base_url=request.base_url,
            access_token=access_token,
        )
        headers = build_upstream_headers(
            profile.header_templates,
            api_key,
            streaming=request.streaming,
            extra=self.extra_headers(request),
            request_id=request_id,
        )
        return UpstreamRequest(url=url, headers=headers, body=self.build_body(request))

    def build_body(self, request: ChatRequest) -> dict[str, Any]:
        raise NotImplementedError

    def extra_headers(self, request: ChatRequest) -> dict[str, str]:
        return {}

    @staticmethod
    def inline_messages(messages: tuple[Message, ...]) -> list[dict[str, str]]:
        return [{"role": msg.role, "content": msg.content} for msg in messages]

    @staticmethod
    def optional_params(**values: Any) -> dict[str, Any]:
        return {key: value for key, value in values.items() if value is not None}

    # ---- streaming ----

    def parse_line(self, line: str) -> StreamEvent:
        """Decoded line -> StreamEvent. Never raises: a corrupt frame is IGNORE."""

        payload = strip_data_prefix(line, self.data_prefix)
        if not payload:
            return IGNORE
        if payload == self.done_marker:
            return STREAM_DONE
        try:
            obj = decode_frame(payload)
            return self.parse_payload(obj)
        except (FrameParseError, TypeError, ValueError, AttributeError) as exc:
            logger.debug("[FRAME_IGNORED] dialect=%s reason=%s preview=%s", self.dialect, exc, payload[:80])
            return IGNORE

    def parse_payload(self, obj: dict[str, Any]) -> StreamEvent:
        raise NotImplementedError

    # ---- non-streaming ----

    def parse_full_response(self, data: Any, *, result_paths: tuple[JsonPath, ...] = ()) -> str:
        message = extract_error_message(data)
        if message:
            raise UpstreamHTTPError(message)
        for path in result_paths or self.result_paths:
            text = get_text(data, path)
            if text:
                return text
        return ""

    def format_upstream_error(self, raw: bytes, *, status_code: int, reason_phrase: str = "") -> str:
        fallback = f"HTTP {status_code}: {reason_phrase}"
        try:
            data = json.loads(raw) if raw else None
        except ValueError:
            return fallback
        message = extract_error_message(data)
        if message:
            return message
        if isinstance(data, dict):
            for field in ("message", "msg", "detail"):
                value = data.get(field)
                if isinstance(value, str) and value.strip():
                    return value.strip()[:_ERROR_PREVIEW_CHARS]
        return fallback


__all__ = [
    "ContentDelta",
    "IGNORE",
    "ProviderAdapter",
    "STREAM_DONE",
    "StreamDone",
    "StreamError",
    "StreamEvent",
    "decode_frame",
    "extract_error_message",
    "get_path",
    "get_text",
]
