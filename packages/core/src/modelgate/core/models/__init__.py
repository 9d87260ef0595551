"""ModelGate Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .account import Account, ModelPriceCap, QuotaCounter
from .catalog import (
    AliasRule,
    AliasTarget,
    FallbackChain,
    HealthStat,
    ModelEntry,
    ResolvedTarget,
)
from .chat import (
    BlockedResult,
    ChatExchange,
    ChatMessage,
    ChatRequest,
    ChatResult,
    RoutingTrace,
    StreamEvent,
)
from .enums import (
    TERMINAL_PHASES,
    VALID_TRANSITIONS,
    VERDICT_SEVERITY,
    AccountStatus,
    DenyReason,
    ExchangeOutcome,
    MatchType,
    MessageRole,
    PolicyAction,
    PolicyScope,
    RoutingPhase,
    StreamEventType,
    Verdict,
    validate_transition,
)
from .exchange import ExchangeRecord
from .policy import EvaluationResult, Policy, PolicyHit

__all__ = [
    # 枚举
    "AccountStatus",
    "DenyReason",
    "ExchangeOutcome",
    "MatchType",
    "MessageRole",
    "PolicyAction",
    "PolicyScope",
    "StreamEventType",
    "Verdict",
    "VERDICT_SEVERITY",
    # 路由状态机
    "RoutingPhase",
    "VALID_TRANSITIONS",
    "TERMINAL_PHASES",
    "validate_transition",
    # Catalog
    "ModelEntry",
    "AliasTarget",
    "AliasRule",
    "FallbackChain",
    "ResolvedTarget",
    "HealthStat",
    # Account
    "Account",
    "ModelPriceCap",
    "QuotaCounter",
    # Policy
    "Policy",
    "PolicyHit",
    "EvaluationResult",
    # Chat
    "ChatMessage",
    "ChatRequest",
    "ChatResult",
    "BlockedResult",
    "ChatExchange",
    "RoutingTrace",
    "StreamEvent",
    # Exchange
    "ExchangeRecord",
]
