"""对话请求分发：model -> provider -> adapter -> transport -> normalizer。

一次 send 调用独占：transport、normalizer、累计缓冲。
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from typing import Any, Optional, Union

from polychat.core.errors import (
    ChatError,
    ConfigurationError,
    InvalidRequestError,
    StreamCancelledError,
    UpstreamHTTPError,
)
from polychat.core.middleware import get_current_request_id
from polychat.services.chat_models import (
    ChatParameters,
    ChatRequest,
    Completed,
    Credentials,
    Failed,
    Message,
    StreamOutcome,
    UpstreamRequest,
)
from polychat.services.llm_catalog import Provider, ProviderCatalog, ProviderProfile, parse_provider, resolve_model
from polychat.services.providers import ContentDelta, ProviderAdapter, fetch_access_token, get_provider_adapter
from polychat.services.providers.sse import iter_lines
from polychat.services.stream_normalizer import (
    IncrementCallback,
    OutcomeCallback,
    StreamNormalizer,
    invoke_callback,
)
from polychat.services.transport import UpstreamTransport, iter_raw_chunks
from polychat.services.upstream_auth import mask_secret
from polychat.settings.config import Settings, get_settings

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ProviderProfile], UpstreamTransport]

_PROBE_PROMPT = "hi"


def _coerce_message(item: Union[Message, Mapping[str, Any]]) -> Message:
    if isinstance(item, Message):
        return item
    if not isinstance(item, Mapping):
        raise InvalidRequestError("each message must be an object with role and content")
    return Message(role=str(item.get("role") or "").strip(), content=item.get("content") or "")  # type: ignore[arg-type]


class ChatDispatcher:
    """对外唯一入口：send() 以回调形式给出增量与唯一终态。"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._catalog = ProviderCatalog(self._settings)
        self._transport_factory = transport_factory or self._default_transport

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def catalog(self) -> ProviderCatalog:
        return self._catalog

    def _default_transport(self, profile: ProviderProfile) -> UpstreamTransport:
        return UpstreamTransport.from_settings(self._settings, use_proxy=profile.use_proxy)

    # ---- request building ----

    def build_request(
        self,
        *,
        messages: Iterable[Union[Message, Mapping[str, Any]]],
        model: Optional[str] = None,
        provider: Optional[Union[str, Provider]] = None,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        stream: bool = True,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> ChatRequest:
        """provider 显式给出时 model 可为任意标识；否则由 model 反查 provider。"""

        if provider is not None:
            resolved = parse_provider(provider)
            model_name = (model or "").strip() or self._catalog.default_model(resolved)
        else:
            model_name = (model or "").strip() or self._settings.default_model
            resolved = resolve_model(model_name).provider

        parameters = ChatParameters(
            temperature=self._settings.default_temperature if temperature is None else temperature,
            max_tokens=self._settings.default_max_tokens if max_tokens is None else max_tokens,
            top_p=top_p,
            extra=dict(extra or {}),
        )
        return ChatRequest(
            model=model_name,
            provider=resolved.value,
            messages=tuple(_coerce_message(item) for item in messages),
            streaming=bool(stream),
            parameters=parameters,
            credentials=Credentials(api_key=api_key, secret_key=secret_key),
            base_url=(base_url or "").strip() or None,
        )

    # ---- validation / preparation ----

    def _validate(self, request: ChatRequest) -> ProviderProfile:
        """网络调用之前的全部校验；失败即 ConfigurationError。"""

        profile = self._catalog.profile(request.provider)
        if not str(request.credentials.api_key or "").strip():
            raise ConfigurationError(f"{profile.provider.value} API key is required")
        if profile.requires_access_token and not str(request.credentials.secret_key or "").strip():
            raise ConfigurationError(f"{profile.provider.value} secretKey is required")
        if not (request.base_url or profile.base_url):
            raise ConfigurationError(f"{profile.provider.value} base URL is required")
        return profile

    async def _prepare(
        self, request: ChatRequest
    ) -> tuple[ChatRequest, ProviderProfile, ProviderAdapter, UpstreamTransport, UpstreamRequest]:
        profile = self._validate(request)
        adapter = get_provider_adapter(profile.dialect)
        if request.streaming and not profile.supports_streaming:
            request = replace(request, streaming=False)

        transport = self._transport_factory(profile)

        access_token = ""
        if profile.requires_access_token:
            # token 换取必须先于 chat URL 构造完成
            access_token = await fetch_access_token(
                transport,
                token_url=self._settings.baidu_token_url,
                api_key=str(request.credentials.api_key or ""),
                secret_key=str(request.credentials.secret_key or ""),
            )

        upstream = adapter.build_request(
            request,
            profile,
            access_token=access_token,
            request_id=get_current_request_id() or None,
        )
        return request, profile, adapter, transport, upstream

    # ---- dispatch ----

    async def send(
        self,
        request: ChatRequest,
        *,
        on_increment: Optional[IncrementCallback] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamOutcome:
        """发送一次对话请求。

        - 增量按到达顺序串行回调 on_increment
        - on_outcome 恰好回调一次（Completed / Failed）
        - 任务被取消时先回调 Failed(cancelled) 再向上抛 CancelledError
        """

        started = time.perf_counter()
        normalizer: Optional[StreamNormalizer] = None

        logger.info(
            "[CHAT_DISPATCH] provider=%s model=%s stream=%s api_key=%s",
            request.provider,
            request.model,
            request.streaming,
            mask_secret(request.credentials.api_key),
        )

        try:
            request, profile, adapter, transport, upstream = await self._prepare(request)
            normalizer = StreamNormalizer(adapter.parse_line, on_increment=on_increment, on_outcome=on_outcome)
            if request.streaming:
                outcome = await self._run_stream(adapter, profile, transport, upstream, normalizer, cancel_event)
            else:
                text = await self._run_complete(adapter, profile, transport, upstream)
                outcome = await normalizer.finalize(Completed(text))
        except ChatError as exc:
            outcome = await self._fail(normalizer, on_outcome, exc)
        except asyncio.CancelledError:
            await self._fail(normalizer, on_outcome, StreamCancelledError())
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        if isinstance(outcome, Completed):
            logger.info(
                "[STREAM_COMPLETED] provider=%s model=%s increments=%s chars=%s duration_ms=%.1f",
                request.provider,
                request.model,
                normalizer.increments if normalizer is not None else 0,
                len(outcome.text),
                duration_ms,
            )
        else:
            logger.warning(
                "[STREAM_FAILED] provider=%s model=%s code=%s error=%s duration_ms=%.1f",
                request.provider,
                request.model,
                outcome.error.code,
                outcome.message,
                duration_ms,
            )
        return outcome

    async def _fail(
        self,
        normalizer: Optional[StreamNormalizer],
        on_outcome: Optional[OutcomeCallback],
        error: ChatError,
    ) -> StreamOutcome:
        if normalizer is not None:
            return await normalizer.fail(error)
        outcome = Failed(error)
        await invoke_callback(on_outcome, outcome)
        return outcome

    async def _run_stream(
        self,
        adapter: ProviderAdapter,
        profile: ProviderProfile,
        transport: UpstreamTransport,
        upstream: UpstreamRequest,
        normalizer: StreamNormalizer,
        cancel_event: Optional[asyncio.Event],
    ) -> StreamOutcome:
        async with transport.stream(upstream) as response:
            status_code = int(response.status_code)
            if not 200 <= status_code < 300:
                raw = await response.aread()
                message = adapter.format_upstream_error(
                    raw, status_code=status_code, reason_phrase=str(response.reason_phrase or "")
                )
                logger.warning("[UPSTREAM_HTTP_ERROR] status=%s error=%s", status_code, message)
                raise UpstreamHTTPError(message, upstream_status=status_code)

            content_type = str((response.headers or {}).get("content-type") or "").lower()
            if "application/json" in content_type:
                # 上游忽略 stream=true 直接回完整 JSON（含 Baidu 的 200 + error_code）
                logger.info("[UPSTREAM_NOT_SSE] content_type=%s", content_type)
                raw = await response.aread()
                text = adapter.parse_full_response(_load_json(raw), result_paths=profile.result_paths)
                increment, _ = normalizer.apply(ContentDelta(text))
                if increment is not None:
                    await normalizer.emit(increment)
                return await normalizer.finalize(Completed(normalizer.cumulative_text))

            lines = iter_lines(iter_raw_chunks(response))
            return await normalizer.run(lines, cancel_event=cancel_event)

    async def _run_complete(
        self,
        adapter: ProviderAdapter,
        profile: ProviderProfile,
        transport: UpstreamTransport,
        upstream: UpstreamRequest,
    ) -> str:
        response = await transport.post(upstream)
        if not response.ok:
            message = adapter.format_upstream_error(
                response.content, status_code=response.status_code, reason_phrase=response.reason_phrase
            )
            logger.warning("[UPSTREAM_HTTP_ERROR] status=%s error=%s", response.status_code, message)
            raise UpstreamHTTPError(message, upstream_status=response.status_code)
        return adapter.parse_full_response(_load_json(response.content), result_paths=profile.result_paths)

    # ---- helpers for the HTTP layer ----

    async def complete(self, request: ChatRequest) -> str:
        """非流式：成功返回全文，失败抛出对应 ChatError。"""

        outcome = await self.send(replace(request, streaming=False))
        if isinstance(outcome, Failed):
            raise outcome.error
        return outcome.text

    async def probe(
        self,
        provider: Union[str, Provider],
        *,
        api_key: Optional[str],
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ) -> StreamOutcome:
        """用最小请求验证凭证是否可用。"""

        request = self.build_request(
            provider=provider,
            model=model,
            messages=[{"role": "user", "content": _PROBE_PROMPT}],
            api_key=api_key,
            secret_key=secret_key,
            base_url=base_url,
            stream=False,
            max_tokens=10,
        )
        return await self.send(request)


def _load_json(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise UpstreamHTTPError("upstream returned invalid JSON") from exc


__all__ = ["ChatDispatcher", "TransportFactory"]
