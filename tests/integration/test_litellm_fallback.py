"""LiteLLM 模式 fallback 集成测试

mock litellm.acompletion：主模型返回 400（不可重试），fallback 候选成功。
验证路由轨迹、按实际模型计价、健康统计。
"""

from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from modelgate.gateway.main import create_app, lifespan
from modelgate.provider import LiteLLMClient


class BadRequestError(Exception):
    status_code = 400


def _make_mock_response(content: str = "Recovered on fallback"):
    resp = MagicMock()
    resp.choices = [MagicMock()]
    resp.choices[0].message.content = content
    resp.usage = MagicMock()
    resp.usage.prompt_tokens = 10
    resp.usage.completion_tokens = 5
    resp.usage.total_tokens = 15
    return resp


@pytest_asyncio.fixture
async def litellm_app(gateway_env, monkeypatch):
    monkeypatch.setenv("MODELGATE_LLM_MODE", "litellm")
    calls: list[str] = []

    async def fake_acompletion(**kwargs):
        calls.append(kwargs["model"])
        if kwargs["model"] == "openai/gpt-4-turbo-preview":
            raise BadRequestError("context too long")
        return _make_mock_response()

    with patch("modelgate.provider.client.acompletion", side_effect=fake_acompletion):
        app = create_app()
        async with lifespan(app):
            app.state.upstream_calls = calls
            yield app


class TestLiteLLMFallback:
    async def test_fatal_primary_falls_back(self, litellm_app):
        assert isinstance(litellm_app.state.llm_client, LiteLLMClient)
        async with AsyncClient(
            transport=ASGITransport(app=litellm_app), base_url="http://test"
        ) as client:
            resp = await client.post(
                "/api/v1/chat",
                json={
                    "model": "gpt-4.1",
                    "messages": [{"role": "user", "content": "summarise this"}],
                },
                headers={"X-Account-ID": "demo-user"},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["content"] == "Recovered on fallback"
        assert data["routing"]["attempts"] == ["gpt-4-turbo-preview", "gpt-4o-mini"]
        assert data["routing"]["used_fallback"] is True
        assert data["routing"]["provider"] == "openai"
        # 400 不在同一候选上重试
        assert litellm_app.state.upstream_calls == [
            "openai/gpt-4-turbo-preview",
            "openai/gpt-4o-mini",
        ]

        mini = litellm_app.state.catalog.get_model("gpt-4o-mini")
        expected = 10 * mini.prompt_price_per_1k / 1000 + 5 * mini.completion_price_per_1k / 1000
        assert data["cost"] == pytest.approx(expected, abs=1e-9)

        board = litellm_app.state.health_board
        assert board.get("gpt-4-turbo-preview").failures == 1
        assert board.get("gpt-4o-mini").successes == 1
