"""集成测试共享 fixture -- 完整 lifespan 装配的 app"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from modelgate.gateway.main import create_app, lifespan


@pytest.fixture
def gateway_env(tmp_path: Path, monkeypatch) -> Path:
    """Echo 模式 + 临时数据库"""
    monkeypatch.setenv("MODELGATE_DB_PATH", str(tmp_path / "sqlite" / "integration.db"))
    monkeypatch.setenv("MODELGATE_LLM_MODE", "echo")
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.delenv("LITELLM_PROXY_URL", raising=False)
    return tmp_path


@pytest_asyncio.fixture
async def integration_app(gateway_env):
    app = create_app()
    async with lifespan(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
