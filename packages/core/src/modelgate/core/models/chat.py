"""Chat Domain Model -- 请求、路由轨迹、响应载荷、流式事件

ChatExchange 是单个请求处理任务独占的瞬态对象，
响应发出后即丢弃（持久化由存储协作者负责，见 ExchangeRecord）。
"""

from typing import Any

from pydantic import BaseModel, Field

from ..config import MAX_MESSAGE_CHARS
from .enums import StreamEventType, Verdict


class ChatMessage(BaseModel):
    """单条对话消息"""

    role: str = Field(description="system / user / assistant")
    content: str = Field(max_length=MAX_MESSAGE_CHARS, description="消息文本")

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    """对话请求"""

    model: str = Field(min_length=1, description="模型 ID 或 alias")
    messages: list[ChatMessage] = Field(min_length=1, description="对话消息，按时间顺序")
    temperature: float | None = Field(default=None)
    max_tokens: int | None = Field(default=None, ge=1)
    conversation_id: str | None = Field(default=None)


class RoutingTrace(BaseModel):
    """路由轨迹"""

    selected_model: str = Field(description="实际使用的模型 ID")
    provider: str = Field(description="实际使用的 provider")
    attempts: list[str] = Field(description="按顺序尝试过的模型 ID")
    used_fallback: bool = Field(description="是否使用了 fallback 候选")


class ChatResult(BaseModel):
    """完成的对话响应载荷"""

    exchange_id: str
    conversation_id: str | None = Field(default=None)
    content: str
    tokens_in: int = Field(ge=0)
    tokens_out: int = Field(ge=0)
    cost: float = Field(ge=0.0, description="成本（美分），按实际使用模型计价")
    latency_ms: int = Field(ge=0)
    routing: RoutingTrace
    moderation: Verdict = Field(default=Verdict.PASS, description="assistant 输出评估结论")


class BlockedResult(BaseModel):
    """用户输入被策略拦截时的响应（不是错误）"""

    exchange_id: str
    conversation_id: str | None = Field(default=None)
    policy_id: str
    policy_name: str
    blocked: bool = Field(default=True)
    message: str = Field(default="Request blocked by content policy")


class ChatExchange(BaseModel):
    """进行中的对话交换（Router 与 Orchestrator 之间传递）"""

    exchange_id: str
    account_id: str
    request: ChatRequest
    resolved_model: str | None = Field(default=None)
    provider: str = Field(default="")
    attempts: list[str] = Field(default_factory=list)
    used_fallback: bool = Field(default=False)
    tokens_in: int = Field(default=0, ge=0)
    tokens_out: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0)
    latency_ms: int = Field(default=0, ge=0)


class StreamEvent(BaseModel):
    """流式输出事件"""

    type: StreamEventType
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(type=StreamEventType.DELTA, data={"text": text})

    @classmethod
    def heartbeat(cls) -> "StreamEvent":
        return cls(type=StreamEventType.HEARTBEAT)
