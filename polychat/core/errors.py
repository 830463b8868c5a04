"""对话链路错误分类（SSOT）。

所有错误都以 ChatError 为根：
- code/status_code 供 HTTP 层直接映射
- message 为面向用户的可读信息（不含密钥）
"""

from __future__ import annotations

from typing import Optional


class ChatError(Exception):
    code = "chat_error"
    status_code = 500

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        text = str(message or "").strip() or self.code.replace("_", " ")
        super().__init__(text)
        self.message = text
        if code:
            self.code = code


class ConfigurationError(ChatError):
    """缺少 API key / secret 等，在任何网络调用之前抛出，永不重试。"""

    code = "configuration_error"
    status_code = 400


class InvalidRequestError(ChatError):
    code = "invalid_request"
    status_code = 400


class UnsupportedModelError(ChatError):
    code = "unsupported_model"
    status_code = 400


class UnsupportedProviderError(ChatError):
    code = "unsupported_provider"
    status_code = 400


class UpstreamHTTPError(ChatError):
    """上游返回非 2xx，或 2xx 但 body 内带错误。"""

    code = "upstream_http_error"

    def __init__(self, message: str = "", *, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status

    @property
    def status_code(self) -> int:  # type: ignore[override]
        status = self.upstream_status
        if isinstance(status, int) and 400 <= status <= 599:
            return status
        return 502


class TokenExchangeError(ChatError):
    """百度 access_token 换取失败（发生在 chat 调用之前）。"""

    code = "token_exchange_error"
    status_code = 502


class StreamTransportError(ChatError):
    """读取 body 过程中的网络层失败（断连、超时）。"""

    code = "stream_transport_error"

    def __init__(self, message: str = "", *, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 504 if self.timeout else 502


class StreamCancelledError(ChatError):
    code = "cancelled"
    status_code = 499

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)


class FrameParseError(ChatError):
    """单帧内容损坏；只在 adapter 内部抛出并就地吞掉（视为 ignore）。"""

    code = "frame_parse_error"
    status_code = 502


__all__ = [
    "ChatError",
    "ConfigurationError",
    "FrameParseError",
    "InvalidRequestError",
    "StreamCancelledError",
    "StreamTransportError",
    "TokenExchangeError",
    "UnsupportedModelError",
    "UnsupportedProviderError",
    "UpstreamHTTPError",
]
