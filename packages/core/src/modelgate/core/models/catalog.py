"""Catalog Domain Model -- 模型条目、alias 规则、fallback 链、健康统计

ModelEntry 以 id 为全局唯一标识；价格单位为「美分 / 1k tokens」。
Catalog 快照内的对象一经创建不可变（frozen），管理端更新通过整体替换快照完成。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ModelEntry(BaseModel):
    """上游模型条目"""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(description="上游 provider（如 openai / anthropic）")
    id: str = Field(min_length=1, description="上游模型 ID，全局唯一")
    prompt_price_per_1k: float = Field(ge=0.0, description="输入价格（美分 / 1k tokens）")
    completion_price_per_1k: float = Field(ge=0.0, description="输出价格（美分 / 1k tokens）")


class AliasTarget(BaseModel):
    """alias 的单个加权目标"""

    model_config = ConfigDict(frozen=True)

    model_id: str = Field(description="目标模型 ID（必须为具体模型，不能是 alias）")
    weight: int = Field(ge=0, description="非负整数权重")


class AliasRule(BaseModel):
    """alias -> 加权目标列表"""

    model_config = ConfigDict(frozen=True)

    alias: str = Field(min_length=1, description="alias 名称")
    targets: tuple[AliasTarget, ...] = Field(description="加权目标（顺序即平局决胜顺序）")

    @property
    def total_weight(self) -> int:
        return sum(t.weight for t in self.targets)


class FallbackChain(BaseModel):
    """某个模型失败后依次尝试的备选模型"""

    model_config = ConfigDict(frozen=True)

    model_id: str = Field(description="主模型 ID")
    chain: tuple[str, ...] = Field(default=(), description="有序备选模型 ID 列表")

    @field_validator("chain", mode="before")
    @classmethod
    def _strip_blank(cls, value):
        return tuple(str(v).strip() for v in value if str(v).strip())


class ResolvedTarget(BaseModel):
    """Catalog 解析结果：主目标 + fallback 候选"""

    model_config = ConfigDict(frozen=True)

    requested: str = Field(description="调用方请求的模型名或 alias")
    alias: str | None = Field(default=None, description="经由的 alias（直接请求具体模型时为 None）")
    primary: ModelEntry = Field(description="主目标")
    fallbacks: tuple[ModelEntry, ...] = Field(default=(), description="fallback 候选（有序）")

    @property
    def candidates(self) -> tuple[ModelEntry, ...]:
        """[primary] + fallbacks"""
        return (self.primary, *self.fallbacks)


class HealthStat(BaseModel):
    """单个模型的健康统计快照"""

    model_id: str
    provider: str = Field(default="")
    successes: int = Field(default=0, ge=0)
    failures: int = Field(default=0, ge=0)
    last_ok: bool = Field(default=False)
    last_latency_ms: int | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)
