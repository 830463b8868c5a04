"""服务信息 / 健康检查 / 模型目录。"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request

from polychat.services.llm_catalog import MODEL_CATALOG
from polychat.settings.config import get_settings

from .chat import get_dispatcher

router = APIRouter(tags=["system"])

_ENDPOINTS = {
    "health": "GET /api/health",
    "models": "GET /api/models",
    "chat": "POST /api/chat",
    "providerChat": "POST /api/{provider}/chat",
    "test": "POST /api/test",
}


@router.get("/")
async def index() -> dict[str, Any]:
    settings = get_settings()
    return {
        "name": settings.app_name,
        "description": settings.app_description,
        "version": settings.app_version,
        "endpoints": _ENDPOINTS,
    }


@router.get("/api/health")
async def health(request: Request) -> dict[str, Any]:
    dispatcher = get_dispatcher(request)
    settings = dispatcher.settings
    started_at = getattr(request.app.state, "started_at", None) or time.monotonic()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - started_at, 3),
        "proxy": "enabled" if settings.proxy_url else "disabled",
        "services": dispatcher.catalog.providers(),
        "version": settings.app_version,
    }


@router.get("/api/models")
async def list_models(request: Request) -> dict[str, Any]:
    dispatcher = get_dispatcher(request)
    grouped: dict[str, list[str]] = {provider: [] for provider in dispatcher.catalog.providers()}
    for info in MODEL_CATALOG.values():
        grouped[info.provider.value].append(info.model)
    return {"models": dispatcher.catalog.list_models(), "providers": grouped}


__all__ = ["router"]
