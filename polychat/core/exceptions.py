"""全局异常处理。"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from polychat.core.errors import ChatError
from polychat.core.middleware import get_current_request_id

logger = logging.getLogger(__name__)


def _request_id_of(request: Optional[Request]) -> str:
    state_id = getattr(getattr(request, "state", None), "request_id", None) if request is not None else None
    return state_id or get_current_request_id() or uuid.uuid4().hex


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """创建统一格式的错误响应。

    `error` 与 `message` 同值：浏览器端只认 `error` 字段。
    """

    if request_id is None:
        request_id = get_current_request_id() or uuid.uuid4().hex

    payload: Dict[str, Any] = {
        "status": status_code,
        "code": code,
        "msg": message,
        "message": message,
        "error": message,
        "request_id": request_id,
    }
    return JSONResponse(status_code=status_code, content=payload, headers=headers or {})


def chat_error_response(exc: ChatError, request: Optional[Request] = None) -> JSONResponse:
    return create_error_response(
        status_code=int(exc.status_code),
        code=exc.code,
        message=exc.message,
        request_id=_request_id_of(request),
    )


def _build_detail(detail: Any, default_code: str) -> Dict[str, Any]:
    if isinstance(detail, dict):
        result = detail.copy()
        result.setdefault("code", default_code)
        message = result.get("message") or result.get("msg") or default_code.replace("_", " ")
        result.setdefault("message", message)
        result.setdefault("msg", message)
        result.setdefault("error", message)
        return result
    message = str(detail) if detail is not None else default_code.replace("_", " ")
    return {"code": default_code, "message": message, "msg": message, "error": message}


def register_exception_handlers(app: FastAPI) -> None:
    """注册 FastAPI 全局异常处理。"""

    @app.exception_handler(ChatError)
    async def chat_exception_handler(request: Request, exc: ChatError) -> JSONResponse:
        if int(exc.status_code) >= 500:
            logger.warning("[CHAT_ERROR] code=%s status=%s error=%s", exc.code, exc.status_code, exc.message)
        return chat_error_response(exc, request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = _request_id_of(request)
        logger.info("Request validation failed request_id=%s path=%s", request_id, request.url.path)
        return JSONResponse(
            status_code=422,
            content={
                "status": 422,
                "code": "validation_error",
                "detail": jsonable_encoder(exc.errors()),
                "msg": "请求参数错误",
                "error": "请求参数错误",
                "request_id": request_id,
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        payload = _build_detail(exc.detail, default_code="http_error")
        payload["status"] = exc.status_code
        payload["request_id"] = _request_id_of(request)
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: D401
        request_id = _request_id_of(request)
        logger.exception("Unhandled exception request_id=%s path=%s", request_id, request.url.path)
        return create_error_response(500, "internal_server_error", "Internal server error", request_id)


__all__ = ["chat_error_response", "create_error_response", "register_exception_handlers"]
