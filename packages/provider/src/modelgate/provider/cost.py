"""CostTracker -- token 估算与成本计算

token 计数双通道策略: litellm.token_counter() -> 字符数 / 4 兜底。
成本按 catalog 价格（美分 / 1k tokens）计算，始终使用实际调用的模型。
除 compute_cost 外所有方法不抛异常。
"""

import contextlib
import math

import structlog
from litellm import token_counter
from modelgate.core.config import DEFAULT_COMPLETION_ESTIMATE
from modelgate.core.models import ModelEntry

from .models import TokenUsage

log = structlog.get_logger()

# 兜底估算：平均每 token 约 4 个字符
_CHARS_PER_TOKEN = 4


class CostTracker:
    """成本追踪器

    提供 token 估算、usage 解析、成本计算等静态方法。
    """

    @staticmethod
    def count_prompt_tokens(messages: list[dict[str, str]], model_id: str = "") -> int:
        """统计 messages 的 token 数

        双通道策略：
        1. 主路径: litellm.token_counter(model=..., messages=...)
        2. 兜底路径: 总字符数 / 4 向上取整
        """
        try:
            count = token_counter(model=model_id or "gpt-4o-mini", messages=messages)
            if count is not None and count >= 0:
                return int(count)
        except Exception as e:
            log.debug("token_counter_failed", model_id=model_id, error_type=type(e).__name__)

        chars = sum(len(m.get("content", "") or "") for m in messages)
        return math.ceil(chars / _CHARS_PER_TOKEN)

    @staticmethod
    def count_text_tokens(text: str, model_id: str = "") -> int:
        try:
            count = token_counter(model=model_id or "gpt-4o-mini", text=text)
            if count is not None and count >= 0:
                return int(count)
        except Exception as e:
            log.debug("token_counter_failed", model_id=model_id, error_type=type(e).__name__)
        return math.ceil(len(text) / _CHARS_PER_TOKEN)

    @staticmethod
    def estimate_request_tokens(
        messages: list[dict[str, str]],
        model_id: str = "",
        max_tokens: int | None = None,
    ) -> int:
        """准入用的预估 token 总数 = prompt tokens + (max_tokens 或默认输出预估)"""
        prompt = CostTracker.count_prompt_tokens(messages, model_id)
        completion = max_tokens if max_tokens is not None else DEFAULT_COMPLETION_ESTIMATE
        return prompt + completion

    @staticmethod
    def compute_cost(entry: ModelEntry, tokens_in: int, tokens_out: int) -> float:
        """cost = tokens_in * prompt_price/1000 + tokens_out * completion_price/1000（美分）"""
        return (
            tokens_in * entry.prompt_price_per_1k / 1000
            + tokens_out * entry.completion_price_per_1k / 1000
        )

    @staticmethod
    def parse_usage(response) -> TokenUsage:
        """从 LiteLLM 响应（或流式 chunk）解析 token 使用数据

        Returns:
            TokenUsage 实例（失败时返回全零）
        """
        try:
            usage = getattr(response, "usage", None)
            if usage is not None:
                prompt = getattr(usage, "prompt_tokens", 0) or 0
                completion = getattr(usage, "completion_tokens", 0) or 0
                total = getattr(usage, "total_tokens", 0) or (prompt + completion)
                return TokenUsage(
                    prompt_tokens=prompt,
                    completion_tokens=completion,
                    total_tokens=total,
                )
        except Exception as e:
            log.debug("parse_usage_failed", error_type=type(e).__name__)

        return TokenUsage()

    @staticmethod
    def usage_from_text(
        messages: list[dict[str, str]],
        completion: str,
        model_id: str = "",
    ) -> TokenUsage:
        """上游未返回 usage 时按文本估算"""
        prompt_tokens = 0
        completion_tokens = 0
        with contextlib.suppress(Exception):
            prompt_tokens = CostTracker.count_prompt_tokens(messages, model_id)
            completion_tokens = CostTracker.count_text_tokens(completion, model_id)
        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
