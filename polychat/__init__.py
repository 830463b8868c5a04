"""PolyChat Relay：多厂商大模型流式对话中继。"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from polychat.api import api_router
from polychat.core.exceptions import register_exception_handlers
from polychat.core.middleware import REQUEST_ID_HEADER_NAME, RequestIDMiddleware
from polychat.log import setup_logging
from polychat.services.chat_dispatcher import ChatDispatcher
from polychat.settings.config import Settings, get_settings


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = time.monotonic()
        yield

    app = FastAPI(
        title=settings.app_name,
        description=settings.app_description,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.chat_dispatcher = ChatDispatcher(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER_NAME],
    )
    # 后注册的中间件在外层：request_id 覆盖 CORS 预检与错误响应
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app"]
