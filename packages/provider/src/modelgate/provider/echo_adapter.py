"""EchoClient -- Echo 模式上游客户端

离线 / 开发环境使用：回显最后一条 user message，
实现与 LiteLLMClient 相同的 chat / chat_stream 接口。
"""

import asyncio
import time
from collections.abc import AsyncIterator

from .models import ModelCallResult, StreamChunk, TokenUsage


class EchoClient:
    """回声客户端"""

    def __init__(self, delay_s: float = 0.01) -> None:
        self._delay_s = delay_s

    async def chat(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        provider: str = "",
    ) -> ModelCallResult:
        """返回 "Echo: {content}" 格式的回声

        token 按 word 简单估算。
        """
        start_time = time.monotonic()
        user_content = self._extract_last_user_content(messages)

        # 模拟少量延迟
        await asyncio.sleep(self._delay_s)

        return self._build_result(
            model_id,
            provider,
            messages,
            f"Echo: {user_content}",
            int((time.monotonic() - start_time) * 1000),
        )

    async def chat_stream(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        provider: str = "",
    ) -> AsyncIterator[StreamChunk]:
        """按 word 逐段输出回声，最后输出元数据片段"""
        start_time = time.monotonic()
        text = f"Echo: {self._extract_last_user_content(messages)}"
        words = text.split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(self._delay_s)
            yield StreamChunk(delta=word if i == 0 else f" {word}")
        yield StreamChunk(
            result=self._build_result(
                model_id,
                provider,
                messages,
                text,
                int((time.monotonic() - start_time) * 1000),
            )
        )

    @staticmethod
    def _build_result(
        model_id: str,
        provider: str,
        messages: list[dict[str, str]],
        text: str,
        latency_ms: int,
    ) -> ModelCallResult:
        prompt_tokens = sum(len((m.get("content") or "").split()) for m in messages)
        completion_tokens = len(text.split())
        return ModelCallResult(
            content=text,
            model_id=model_id,
            provider=provider or "echo",
            latency_ms=latency_ms,
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    @staticmethod
    def _extract_last_user_content(messages: list[dict[str, str]]) -> str:
        """提取最后一条 user message 的 content，无 user 消息时返回 "(empty)" """
        for msg in reversed(messages):
            if msg.get("role") == "user":
                return msg.get("content", "")

        if messages:
            return messages[-1].get("content", "(empty)")
        return "(empty)"
