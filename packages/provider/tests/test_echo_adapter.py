"""EchoClient 单元测试

验证 messages -> content 提取、ModelCallResult 构建、流式分段输出。
"""

import pytest
from modelgate.provider.echo_adapter import EchoClient
from modelgate.provider.models import ModelCallResult


@pytest.fixture
def echo():
    return EchoClient(delay_s=0)


class TestEchoClient:
    async def test_single_user_message(self, echo):
        result = await echo.chat("gpt-4o-mini", [{"role": "user", "content": "Hello World"}])

        assert isinstance(result, ModelCallResult)
        assert result.content == "Echo: Hello World"
        assert result.model_id == "gpt-4o-mini"
        assert result.provider == "echo"

    async def test_provider_passthrough(self, echo):
        result = await echo.chat("m", [{"role": "user", "content": "x"}], provider="openai")
        assert result.provider == "openai"

    async def test_multi_turn_uses_last_user(self, echo, multi_turn_messages):
        result = await echo.chat("m", multi_turn_messages)
        assert result.content == "Echo: Tell me more."

    async def test_no_messages(self, echo):
        result = await echo.chat("m", [])
        assert result.content == "Echo: (empty)"

    async def test_token_usage_by_words(self, echo):
        result = await echo.chat("m", [{"role": "user", "content": "one two three"}])
        assert result.tokens_in == 3
        assert result.tokens_out == 4
        assert result.token_usage.total_tokens == 7

    async def test_stream_reassembles_to_same_text(self, echo, sample_messages):
        chunks = [c async for c in echo.chat_stream("m", sample_messages)]
        deltas = "".join(c.delta for c in chunks if not c.is_final)
        final = chunks[-1]
        assert final.is_final
        assert deltas == final.result.content == "Echo: Hello, world!"
