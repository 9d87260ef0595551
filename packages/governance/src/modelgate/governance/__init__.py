"""ModelGate Governance -- Account Guard、配额、内容治理

packages/governance 的公开接口导出。
"""

from .accounts import AccountGuard, Decision, expected_cost, seeded_accounts
from .exceptions import (
    AccessDeniedError,
    AccountNotFoundError,
    GovernanceError,
    InvalidPolicyError,
)
from .pii import PII_PATTERNS, redact_pii
from .policy_engine import CompiledPolicy, PolicyEngine, compile_policy
from .quota import QuotaLedger, QuotaReservation

__all__ = [
    "AccountGuard",
    "Decision",
    "expected_cost",
    "seeded_accounts",
    "QuotaLedger",
    "QuotaReservation",
    "PolicyEngine",
    "CompiledPolicy",
    "compile_policy",
    "redact_pii",
    "PII_PATTERNS",
    "GovernanceError",
    "AccessDeniedError",
    "AccountNotFoundError",
    "InvalidPolicyError",
]
