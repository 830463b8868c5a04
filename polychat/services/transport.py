"""上游 HTTP 传输层（httpx；可选代理 + 有界超时）。"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from polychat.core.errors import StreamTransportError
from polychat.services.ai_url import redact_url
from polychat.services.chat_models import UpstreamRequest
from polychat.settings.config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpstreamResponse:
    """非流式调用的完整响应（body 已读完）。"""

    status_code: int
    reason_phrase: str
    headers: dict[str, str]
    content: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _transport_error(exc: Exception, url: str) -> StreamTransportError:
    if isinstance(exc, httpx.TimeoutException):
        return StreamTransportError(f"upstream timeout: {type(exc).__name__}", timeout=True)
    detail = str(exc).strip() or type(exc).__name__
    logger.warning("[UPSTREAM_TRANSPORT_ERROR] url=%s error=%s", redact_url(url), detail)
    return StreamTransportError(f"upstream connection error: {detail}")


class UpstreamTransport:
    """每个请求一个实例：不跨请求共享连接与缓冲。"""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        proxy_url: Optional[str] = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._proxy_url = proxy_url or None

    @classmethod
    def from_settings(cls, settings: Settings, *, use_proxy: bool = False) -> "UpstreamTransport":
        return cls(
            timeout=settings.request_timeout_seconds,
            connect_timeout=settings.connect_timeout_seconds,
            proxy_url=settings.proxy_url if use_proxy else None,
        )

    @property
    def proxy_url(self) -> Optional[str]:
        return self._proxy_url

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._proxy_url:
            kwargs["proxy"] = self._proxy_url
        return kwargs

    @asynccontextmanager
    async def stream(self, request: UpstreamRequest) -> AsyncIterator[httpx.Response]:
        """打开流式连接；读取 body 期间的网络异常统一转成 StreamTransportError。"""

        try:
            async with httpx.AsyncClient(**self._client_kwargs()) as client:
                async with client.stream(
                    "POST",
                    request.url,
                    json=request.body or None,
                    headers=request.headers,
                ) as response:
                    yield response
        except (httpx.TransportError, httpx.StreamError) as exc:
            raise _transport_error(exc, request.url) from exc

    async def post(self, request: UpstreamRequest) -> UpstreamResponse:
        try:
            async with httpx.AsyncClient(**self._client_kwargs()) as client:
                response = await client.post(request.url, json=request.body or None, headers=request.headers)
                content = await response.aread()
        except (httpx.TransportError, httpx.StreamError) as exc:
            raise _transport_error(exc, request.url) from exc
        return UpstreamResponse(
            status_code=int(response.status_code),
            reason_phrase=str(getattr(response, "reason_phrase", "") or ""),
            headers=dict(response.headers or {}),
            content=bytes(content or b""),
        )


async def iter_raw_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
    """按到达顺序吐出原始字节块（不做解码、不做缓冲）。"""

    async for chunk in response.aiter_bytes():
        if chunk:
            yield chunk


__all__ = ["UpstreamResponse", "UpstreamTransport", "iter_raw_chunks"]
