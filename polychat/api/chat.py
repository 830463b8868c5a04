"""对话中继路由（SSE / 非流式 / 连接测试）。"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Optional, Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from polychat.core.errors import ChatError, StreamTransportError
from polychat.core.exceptions import chat_error_response
from polychat.services.chat_dispatcher import ChatDispatcher
from polychat.services.chat_models import ChatRequest, Completed, Failed, NormalizedIncrement, StreamOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

_KNOWN_FIELDS = {"model", "messages", "apiKey", "secretKey", "baseUrl", "stream", "temperature", "max_tokens", "top_p"}


class ChatMessageIn(BaseModel):
    role: str
    content: str


class ChatPayload(BaseModel):
    """浏览器端请求体；未声明的字段作为厂商参数透传。"""

    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    messages: list[ChatMessageIn] = Field(..., min_length=1)
    apiKey: Optional[str] = None
    secretKey: Optional[str] = None
    baseUrl: Optional[str] = None
    stream: bool = True
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None

    def extra_params(self) -> dict[str, Any]:
        return {k: v for k, v in (self.model_extra or {}).items() if k not in _KNOWN_FIELDS}


class ConnectionTestPayload(BaseModel):
    provider: str
    apiKey: Optional[str] = None
    secretKey: Optional[str] = None
    baseUrl: Optional[str] = None


def get_dispatcher(request: Request) -> ChatDispatcher:
    dispatcher = getattr(request.app.state, "chat_dispatcher", None)
    if dispatcher is None:
        dispatcher = ChatDispatcher()
        request.app.state.chat_dispatcher = dispatcher
    return dispatcher


def _sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


QueueItem = Union[NormalizedIncrement, StreamOutcome]


async def _stream_chat(dispatcher: ChatDispatcher, chat_request: ChatRequest, request: Request) -> Response:
    queue: asyncio.Queue[QueueItem] = asyncio.Queue()

    async def runner() -> None:
        try:
            await dispatcher.send(chat_request, on_increment=queue.put, on_outcome=queue.put)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[STREAM_RUNNER_CRASHED] provider=%s model=%s", chat_request.provider, chat_request.model)
            await queue.put(Failed(ChatError("internal error")))

    task = asyncio.create_task(runner())

    try:
        first = await queue.get()
    except BaseException:
        # 首帧之前被取消（客户端断开 / 停机）：同样要终止上游读取
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise

    if isinstance(first, Failed):
        # 尚未发出任何帧：直接以 JSON 错误响应
        await task
        return chat_error_response(first.error, request)

    async def event_generator():
        item: QueueItem = first
        try:
            while True:
                if isinstance(item, NormalizedIncrement):
                    yield _sse({"content": item.delta_text})
                elif isinstance(item, Completed):
                    yield _sse({"fullContent": item.text})
                    break
                else:
                    yield _sse({"error": item.message})
                    break
                item = await queue.get()
        finally:
            # 客户端断开：取消上游读取，dispatcher 以 Failed(cancelled) 收尾
            if not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


async def _complete_chat(dispatcher: ChatDispatcher, chat_request: ChatRequest) -> dict[str, Any]:
    attempts = dispatcher.settings.max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            text = await dispatcher.complete(chat_request)
        except StreamTransportError as exc:
            if attempt >= attempts:
                raise
            logger.info("[CHAT_RETRY] attempt=%s/%s error=%s", attempt, attempts, exc.message)
            continue
        return {"content": text, "model": chat_request.model, "provider": chat_request.provider}
    raise StreamTransportError("upstream unavailable")


async def _relay(payload: ChatPayload, request: Request, provider: Optional[str] = None) -> Any:
    dispatcher = get_dispatcher(request)
    chat_request = dispatcher.build_request(
        provider=provider,
        model=payload.model,
        messages=[message.model_dump() for message in payload.messages],
        api_key=payload.apiKey,
        secret_key=payload.secretKey,
        base_url=payload.baseUrl,
        stream=payload.stream,
        temperature=payload.temperature,
        max_tokens=payload.max_tokens,
        top_p=payload.top_p,
        extra=payload.extra_params(),
    )
    if chat_request.streaming:
        return await _stream_chat(dispatcher, chat_request, request)
    return await _complete_chat(dispatcher, chat_request)


@router.post("/chat")
async def chat(payload: ChatPayload, request: Request) -> Any:
    return await _relay(payload, request)


@router.post("/{provider}/chat")
async def provider_chat(provider: str, payload: ChatPayload, request: Request) -> Any:
    return await _relay(payload, request, provider=provider)


@router.post("/test")
async def test_connection(payload: ConnectionTestPayload, request: Request) -> JSONResponse:
    dispatcher = get_dispatcher(request)
    try:
        outcome = await dispatcher.probe(
            payload.provider,
            api_key=payload.apiKey,
            secret_key=payload.secretKey,
            base_url=payload.baseUrl,
        )
    except ChatError as exc:
        return JSONResponse(status_code=400, content={"success": False, "message": exc.message})

    if isinstance(outcome, Failed):
        return JSONResponse(status_code=400, content={"success": False, "message": outcome.message})
    return JSONResponse(status_code=200, content={"success": True, "message": "连接成功"})


__all__ = ["ChatPayload", "ConnectionTestPayload", "get_dispatcher", "router"]
