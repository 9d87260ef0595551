"""Account Domain Model -- 账户访问控制与配额

Account 由管理端创建/更新，Account Guard 只读；
QuotaCounter 按 (account_id, UTC 日期) 分桶，跨日由新 day-key 自然取代。
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import AccountStatus


class ModelPriceCap(BaseModel):
    """单模型单次请求的预估成本上限"""

    model_config = ConfigDict(frozen=True)

    model_id: str = Field(description="模型 ID")
    max_cents: int = Field(ge=0, description="单次请求预估成本上限（美分）")


class Account(BaseModel):
    """账户访问策略"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="账户 ID")
    display_name: str = Field(default="", description="展示名称")
    allowed_models: frozenset[str] = Field(
        default_factory=frozenset,
        description="允许使用的模型 ID 或 alias",
    )
    status: AccountStatus = Field(default=AccountStatus.ACTIVE)
    guardrail_prompt: str | None = Field(default=None, description="前置 system 提示")
    req_per_day: int | None = Field(default=None, ge=0, description="每日请求数上限")
    tokens_per_day: int | None = Field(default=None, ge=0, description="每日 token 上限")
    model_price_caps: tuple[ModelPriceCap, ...] = Field(default=())

    @field_validator("allowed_models", mode="before")
    @classmethod
    def _normalize_models(cls, value):
        return frozenset(str(m).strip() for m in value if str(m).strip())

    def allows(self, *names: str | None) -> bool:
        """任一名称（大小写不敏感）在允许列表中即放行"""
        allowed = {m.lower() for m in self.allowed_models}
        return any(n is not None and n.lower() in allowed for n in names)

    def price_cap_for(self, model_id: str) -> ModelPriceCap | None:
        for cap in self.model_price_caps:
            if cap.model_id.lower() == model_id.lower():
                return cap
        return None


class QuotaCounter(BaseModel):
    """某账户某 UTC 日的用量快照"""

    account_id: str
    day_key: str = Field(description="UTC 日期，YYYY-MM-DD")
    requests_used: int = Field(default=0, ge=0)
    tokens_used: int = Field(default=0, ge=0)
    requests_reserved: int = Field(default=0, ge=0, description="已准入未结算的请求数")
    tokens_reserved: int = Field(default=0, ge=0, description="已准入未结算的预估 token")
