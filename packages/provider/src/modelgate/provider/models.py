"""数据模型 -- TokenUsage + ModelCallResult + StreamChunk

所有上游客户端（LiteLLM、Echo、Mock）统一返回这些类型。
"""

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token 使用统计

    key 命名对齐 OpenAI/LiteLLM 行业标准：
    prompt_tokens / completion_tokens / total_tokens
    """

    prompt_tokens: int = Field(default=0, ge=0, description="输入 token 数")
    completion_tokens: int = Field(default=0, ge=0, description="输出 token 数")
    total_tokens: int = Field(default=0, ge=0, description="总 token 数")


class ModelCallResult(BaseModel):
    """单次上游调用结果"""

    # 响应内容
    content: str = Field(description="LLM 响应文本内容")

    # 路由信息
    model_id: str = Field(description="调用的 catalog 模型 ID")
    provider: str = Field(default="", description="provider（如 openai/anthropic）")

    # 性能指标
    latency_ms: int = Field(ge=0, description="上游调用耗时（毫秒）")

    # Token 使用
    token_usage: TokenUsage = Field(
        default_factory=TokenUsage,
        description="Token 使用详情",
    )

    @property
    def tokens_in(self) -> int:
        return self.token_usage.prompt_tokens

    @property
    def tokens_out(self) -> int:
        return self.token_usage.completion_tokens


class StreamChunk(BaseModel):
    """流式调用的单个片段

    上游流按顺序产出若干 delta 片段，最后一个片段携带 result（完整元数据）。
    """

    delta: str = Field(default="", description="增量文本")
    result: ModelCallResult | None = Field(default=None, description="终止片段的元数据")

    @property
    def is_final(self) -> bool:
        return self.result is not None
