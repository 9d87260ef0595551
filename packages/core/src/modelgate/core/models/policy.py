"""Policy Domain Model -- 内容治理规则、命中记录、评估结果

PolicyHit 为 append-only 审计记录：每条命中规则（或每个脱敏片段）一条。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import MatchType, PolicyAction, PolicyScope, Verdict


class Policy(BaseModel):
    """内容治理规则"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="规则 ID")
    name: str = Field(description="规则名称")
    description: str = Field(default="")
    match_type: MatchType = Field(description="contains_any / contains_all / regex")
    pattern: str = Field(description="逗号分隔子串列表，或正则表达式")
    action: PolicyAction = Field(description="flag / redact / block")
    applies_to: PolicyScope = Field(default=PolicyScope.USER)
    enabled: bool = Field(default=True)
    created_at: datetime | None = Field(default=None, description="创建时间，决定评估顺序")


class PolicyHit(BaseModel):
    """规则命中审计记录"""

    id: str = Field(description="ULID")
    message_id: str = Field(description="被评估消息的 ID")
    policy_id: str
    policy_name: str
    action: PolicyAction
    created_at: datetime


class EvaluationResult(BaseModel):
    """Policy Engine 单次评估结果"""

    verdict: Verdict = Field(default=Verdict.PASS)
    redacted_text: str | None = Field(default=None, description="发生脱敏时的结果文本")
    hits: list[PolicyHit] = Field(default_factory=list)
    blocked_by: PolicyHit | None = Field(default=None, description="触发 block 的命中")

    @property
    def blocked(self) -> bool:
        return self.verdict == Verdict.BLOCKED
