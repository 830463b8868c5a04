from __future__ import annotations

import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# 测试隔离：不读取本地 .env 中的真实 key / 代理，不写日志文件
os.environ["DEBUG"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["PROXY_URL"] = ""
os.environ["CUSTOM_BASE_URL"] = ""
os.environ["MAX_RETRIES"] = "1"
os.environ["CORS_ALLOW_ORIGINS"] = "*"

from polychat.settings.config import get_settings

get_settings.cache_clear()

from polychat import app as fastapi_app


@pytest.fixture
def client() -> TestClient:
    with TestClient(fastapi_app) as client:
        yield client


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    async with fastapi_app.router.lifespan_context(fastapi_app):
        transport = ASGITransport(app=fastapi_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
