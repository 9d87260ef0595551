"""Governance 异常体系"""

from modelgate.core.models import DenyReason


class GovernanceError(Exception):
    """Governance 包基础异常"""


class AccessDeniedError(GovernanceError):
    """Account Guard 拒绝请求（不重试，不触达上游）"""

    def __init__(self, reason: DenyReason, account_id: str = "") -> None:
        super().__init__(f"access denied: {reason.value}")
        self.reason = reason
        self.account_id = account_id


class AccountNotFoundError(GovernanceError):
    """管理端操作的账户不存在"""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"account {account_id} not found")
        self.account_id = account_id


class InvalidPolicyError(GovernanceError):
    """策略配置非法（正则无法编译、匹配空串等）"""

    def __init__(self, policy_id: str, reason: str) -> None:
        super().__init__(f"invalid policy {policy_id}: {reason}")
        self.policy_id = policy_id
        self.reason = reason
