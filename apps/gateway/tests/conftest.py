"""apps/gateway 测试配置 -- 组件装配 + httpx AsyncClient"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from modelgate.core.models import (
    Account,
    AliasRule,
    AliasTarget,
    FallbackChain,
    ModelEntry,
)
from modelgate.core.store import create_store_group
from modelgate.governance import AccountGuard, PolicyEngine
from modelgate.provider import Catalog, HealthBoard, RetryPolicy, Router
from modelgate.provider.models import ModelCallResult, StreamChunk, TokenUsage


class ScriptedClient:
    """按模型 ID 返回预设文本或抛出预设异常的上游客户端

    script[model_id] 为 str（回复文本）或 Exception；未配置的模型回复 "Hello world"。
    """

    def __init__(
        self,
        script: dict | None = None,
        tokens_in: int = 40,
        tokens_out: int = 10,
        chunk_delay_s: float = 0.0,
    ) -> None:
        self.script = script or {}
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.chunk_delay_s = chunk_delay_s
        self.calls: list[dict] = []
        self.closed_streams = 0

    def _outcome(self, model_id, messages, temperature, max_tokens):
        self.calls.append(
            {
                "model_id": model_id,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        outcome = self.script.get(model_id, "Hello world")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _result(self, model_id: str, provider: str, content: str) -> ModelCallResult:
        return ModelCallResult(
            content=content,
            model_id=model_id,
            provider=provider,
            latency_ms=5,
            token_usage=TokenUsage(
                prompt_tokens=self.tokens_in,
                completion_tokens=self.tokens_out,
                total_tokens=self.tokens_in + self.tokens_out,
            ),
        )

    async def chat(self, model_id, messages, temperature=None, max_tokens=None, provider=""):
        content = self._outcome(model_id, messages, temperature, max_tokens)
        return self._result(model_id, provider, content)

    async def chat_stream(
        self, model_id, messages, temperature=None, max_tokens=None, provider=""
    ):
        try:
            content = self._outcome(model_id, messages, temperature, max_tokens)
            for i, word in enumerate(content.split(" ")):
                await asyncio.sleep(self.chunk_delay_s)
                yield StreamChunk(delta=word if i == 0 else f" {word}")
            yield StreamChunk(result=self._result(model_id, provider, content))
        finally:
            self.closed_streams += 1


@pytest.fixture
def scripted_client_cls() -> type[ScriptedClient]:
    return ScriptedClient


@pytest.fixture
def catalog() -> Catalog:
    """gpt-x -> [gpt-y]；alias team -> gpt-x；gpt-z 无 fallback"""
    return Catalog(
        models=[
            ModelEntry(
                provider="openai",
                id="gpt-x",
                prompt_price_per_1k=1.0,
                completion_price_per_1k=2.0,
            ),
            ModelEntry(
                provider="anthropic",
                id="gpt-y",
                prompt_price_per_1k=0.5,
                completion_price_per_1k=1.5,
            ),
            ModelEntry(
                provider="openai",
                id="gpt-z",
                prompt_price_per_1k=5.0,
                completion_price_per_1k=15.0,
            ),
        ],
        aliases=[AliasRule(alias="team", targets=(AliasTarget(model_id="gpt-x", weight=1),))],
        fallbacks=[FallbackChain(model_id="gpt-x", chain=("gpt-y",))],
    )


@pytest.fixture
def guard() -> AccountGuard:
    return AccountGuard(
        accounts=[
            Account(
                id="acc",
                allowed_models=["gpt-x", "gpt-y", "team"],
                guardrail_prompt="Be safe.",
                tokens_per_day=100_000,
            ),
            Account(id="tight", allowed_models=["gpt-x"], tokens_per_day=1000),
        ]
    )


@pytest.fixture
def health_board() -> HealthBoard:
    return HealthBoard()


@pytest.fixture
def make_router(catalog, health_board):
    def _make(client) -> Router:
        return Router(
            catalog,
            client,
            health=health_board,
            retry=RetryPolicy(max_attempts=1),
            sleep=AsyncMock(return_value=None),
        )

    return _make


@pytest.fixture
def policies() -> PolicyEngine:
    return PolicyEngine()


@pytest.fixture
def recorder() -> AsyncMock:
    return AsyncMock()


@pytest_asyncio.fixture
async def store_group(tmp_path: Path):
    group = await create_store_group(str(tmp_path / "sqlite" / "gateway.db"))
    yield group
    await group.close()


@pytest_asyncio.fixture
async def client_for():
    """为给定 app 提供 httpx AsyncClient（不触发 lifespan）"""
    clients: list[AsyncClient] = []

    async def _open(app) -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield _open
    for ac in clients:
        await ac.aclose()

