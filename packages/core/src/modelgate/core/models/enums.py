"""枚举定义

包含账户状态、策略匹配/动作/作用域、评估结论、拒绝原因、
消息角色、流式事件类型，以及 Router 状态机的 RoutingPhase、
VALID_TRANSITIONS 合法流转映射和 TERMINAL_PHASES 终态集合。
"""

from enum import StrEnum


class AccountStatus(StrEnum):
    """账户状态"""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class MessageRole(StrEnum):
    """对话消息角色"""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MatchType(StrEnum):
    """策略匹配方式"""

    CONTAINS_ANY = "contains_any"
    CONTAINS_ALL = "contains_all"
    REGEX = "regex"


class PolicyAction(StrEnum):
    """策略命中后的动作"""

    FLAG = "flag"
    REDACT = "redact"
    BLOCK = "block"


class PolicyScope(StrEnum):
    """策略作用域"""

    USER = "user"
    ASSISTANT = "assistant"
    ANY = "any"


class Verdict(StrEnum):
    """内容评估结论（按严重程度递增）"""

    PASS = "pass"
    FLAGGED = "flagged"
    REDACTED = "redacted"
    BLOCKED = "blocked"


VERDICT_SEVERITY: dict[Verdict, int] = {
    Verdict.PASS: 0,
    Verdict.FLAGGED: 1,
    Verdict.REDACTED: 2,
    Verdict.BLOCKED: 3,
}


class DenyReason(StrEnum):
    """Account Guard 拒绝原因"""

    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_SUSPENDED = "account_suspended"
    MODEL_NOT_ALLOWED = "model_not_allowed"
    REQUEST_QUOTA_EXCEEDED = "request_quota_exceeded"
    TOKEN_QUOTA_EXCEEDED = "token_quota_exceeded"
    PRICE_CAP_EXCEEDED = "price_cap_exceeded"


class ExchangeOutcome(StrEnum):
    """持久化的对话交换结果"""

    COMPLETED = "completed"
    BLOCKED = "blocked"


class StreamEventType(StrEnum):
    """流式输出事件类型"""

    START = "start"
    DELTA = "delta"
    HEARTBEAT = "heartbeat"
    BLOCKED = "blocked"
    DONE = "done"
    ERROR = "error"


class RoutingPhase(StrEnum):
    """Router 状态机阶段"""

    RESOLVE = "RESOLVE"
    DISPATCHING = "DISPATCHING"
    DONE = "DONE"
    FAILED = "FAILED"


# 合法阶段流转；DISPATCHING -> DISPATCHING 表示推进到下一个候选
VALID_TRANSITIONS: dict[RoutingPhase, set[RoutingPhase]] = {
    RoutingPhase.RESOLVE: {RoutingPhase.DISPATCHING},
    RoutingPhase.DISPATCHING: {
        RoutingPhase.DISPATCHING,
        RoutingPhase.DONE,
        RoutingPhase.FAILED,
    },
    # 终态不可再流转
    RoutingPhase.DONE: set(),
    RoutingPhase.FAILED: set(),
}

TERMINAL_PHASES: set[RoutingPhase] = {
    RoutingPhase.DONE,
    RoutingPhase.FAILED,
}


def validate_transition(from_phase: RoutingPhase, to_phase: RoutingPhase) -> bool:
    """验证阶段流转是否合法

    Args:
        from_phase: 当前阶段
        to_phase: 目标阶段

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_phase, set())
    return to_phase in allowed
