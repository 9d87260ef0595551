"""ExchangeRecord -- 持久化的对话交换记录

由 Orchestrator 在响应发出时构建，交给存储协作者 fire-and-forget 写入。
只保存预览文本，不保存完整 prompt。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ExchangeOutcome


class ExchangeRecord(BaseModel):
    """exchanges 表记录"""

    exchange_id: str = Field(description="ULID")
    account_id: str
    conversation_id: str | None = Field(default=None)
    outcome: ExchangeOutcome
    requested_model: str
    selected_model: str = Field(default="")
    provider: str = Field(default="")
    attempts: list[str] = Field(default_factory=list)
    used_fallback: bool = Field(default=False)
    tokens_in: int = Field(default=0, ge=0)
    tokens_out: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0)
    latency_ms: int = Field(default=0, ge=0)
    user_message_id: str
    assistant_message_id: str | None = Field(default=None)
    user_preview: str = Field(default="", description="用户消息预览（截断）")
    assistant_preview: str = Field(default="", description="助手回复预览（截断）")
    created_at: datetime
