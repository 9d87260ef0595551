"""Provider 包测试 fixtures"""

from unittest.mock import AsyncMock

import pytest
from modelgate.core.models import AliasRule, AliasTarget, FallbackChain, ModelEntry
from modelgate.provider.catalog import Catalog
from modelgate.provider.models import ModelCallResult, TokenUsage


def make_entry(model_id: str, provider: str = "openai", pp: float = 1.0, cp: float = 2.0) -> ModelEntry:
    return ModelEntry(
        provider=provider,
        id=model_id,
        prompt_price_per_1k=pp,
        completion_price_per_1k=cp,
    )


def make_result(model_id: str, content: str = "ok", tokens_in: int = 10, tokens_out: int = 5) -> ModelCallResult:
    return ModelCallResult(
        content=content,
        model_id=model_id,
        provider="openai",
        latency_ms=42,
        token_usage=TokenUsage(
            prompt_tokens=tokens_in,
            completion_tokens=tokens_out,
            total_tokens=tokens_in + tokens_out,
        ),
    )


@pytest.fixture
def sample_messages() -> list[dict[str, str]]:
    """标准 messages 格式测试数据"""
    return [{"role": "user", "content": "Hello, world!"}]


@pytest.fixture
def multi_turn_messages() -> list[dict[str, str]]:
    """多轮对话 messages 测试数据"""
    return [
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "What is Python?"},
        {"role": "assistant", "content": "Python is a programming language."},
        {"role": "user", "content": "Tell me more."},
    ]


@pytest.fixture
def chain_catalog() -> Catalog:
    """primary -> [backup-1, backup-2] 的三候选 catalog"""
    return Catalog(
        models=[make_entry("primary"), make_entry("backup-1"), make_entry("backup-2", "anthropic", 3.0, 15.0)],
        aliases=[AliasRule(alias="team", targets=(AliasTarget(model_id="primary", weight=1),))],
        fallbacks=[FallbackChain(model_id="primary", chain=("backup-1", "backup-2"))],
    )


@pytest.fixture
def no_sleep() -> AsyncMock:
    """替代 asyncio.sleep，退避不真正等待"""
    return AsyncMock(return_value=None)
