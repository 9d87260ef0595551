"""AccountGuard -- 账户访问控制与配额准入

authorize() 检查顺序（首个失败即返回）：
1. status == active
2. 请求的模型名（或解析后的具体模型）在 allowed_models 中
3. 当日请求数 < req_per_day
4. 当日 token + 预估 token <= tokens_per_day
5. 解析后模型的预估成本 <= model_price_caps 上限

准入时原子预占配额，commit() 在交换完成后按实际 token 结算一次。
账户数据由管理端整体替换（frozen 模型 + 字典引用替换），读取无锁。
"""

import threading

import structlog
from modelgate.core.models import (
    Account,
    AccountStatus,
    DenyReason,
    ModelEntry,
    ModelPriceCap,
    QuotaCounter,
    ResolvedTarget,
)
from pydantic import BaseModel, Field

from .exceptions import AccountNotFoundError
from .quota import QuotaLedger, QuotaReservation

log = structlog.get_logger()

_UNSET = object()


class Decision(BaseModel):
    """authorize() 结论：Allow（带预占凭据）或 Deny（带原因）"""

    allowed: bool
    account_id: str
    reason: DenyReason | None = Field(default=None)
    reservation: QuotaReservation | None = Field(default=None)
    estimated_tokens: int = Field(default=0, ge=0)
    expected_cost: float | None = Field(default=None, description="预估成本（美分）")

    @classmethod
    def deny(cls, account_id: str, reason: DenyReason, **kwargs) -> "Decision":
        return cls(allowed=False, account_id=account_id, reason=reason, **kwargs)


def seeded_accounts() -> list[Account]:
    """演示账户"""
    return [
        Account(
            id="demo-user",
            display_name="Demo User",
            allowed_models=["gpt-4.1", "gpt-4o-mini", "claude-3.5-sonnet"],
            guardrail_prompt=(
                "You are a helpful assistant. Refuse to return secrets, credentials, "
                "or unsafe code. Keep responses concise."
            ),
            req_per_day=500,
            tokens_per_day=500_000,
            model_price_caps=(
                ModelPriceCap(model_id="gpt-4.1", max_cents=50),
                ModelPriceCap(model_id="claude-3.5-sonnet", max_cents=30),
            ),
        ),
        Account(
            id="ops-team",
            display_name="Ops Team",
            allowed_models=["gpt-4.1", "claude-3.5-sonnet", "claude-3-haiku", "ops-fast"],
            guardrail_prompt=(
                "You assist the ops team. Be precise, avoid hallucinations, "
                "and flag risky actions."
            ),
            req_per_day=2000,
            tokens_per_day=2_000_000,
        ),
        Account(
            id="guest",
            display_name="Guest",
            allowed_models=["gpt-4o-mini"],
            status=AccountStatus.SUSPENDED,
            guardrail_prompt=(
                "Do not answer with sensitive data. Keep replies short and safe for guests."
            ),
            req_per_day=50,
            tokens_per_day=50_000,
            model_price_caps=(ModelPriceCap(model_id="gpt-4o-mini", max_cents=5),),
        ),
    ]


def cost_bound(entry: ModelEntry, estimated_tokens: int) -> float:
    """预估成本上界：全部 token 按该模型较贵一侧计价（美分）"""
    rate = max(entry.prompt_price_per_1k, entry.completion_price_per_1k)
    return estimated_tokens * rate / 1000


def expected_cost(resolved: ResolvedTarget, estimated_tokens: int) -> float:
    return cost_bound(resolved.primary, estimated_tokens)


class AccountGuard:
    """账户守卫"""

    def __init__(
        self,
        accounts: list[Account] | None = None,
        ledger: QuotaLedger | None = None,
    ) -> None:
        """初始化

        Args:
            accounts: 账户列表，None 时使用演示账户
            ledger: 配额账本
        """
        account_list = accounts if accounts is not None else seeded_accounts()
        self._accounts: dict[str, Account] = {a.id: a for a in account_list}
        self._write_lock = threading.Lock()
        self.ledger = ledger or QuotaLedger()

    # ---- 准入 / 结算 ----

    def authorize(
        self,
        account: Account | str,
        requested_model: str,
        estimated_tokens: int,
        resolved: ResolvedTarget | None = None,
    ) -> Decision:
        """准入检查；Allow 时已原子预占 1 个请求 + estimated_tokens"""
        if isinstance(account, str):
            found = self._accounts.get(account)
            if found is None:
                return self._log_deny(Decision.deny(account, DenyReason.ACCOUNT_NOT_FOUND))
            account = found

        if account.status != AccountStatus.ACTIVE:
            return self._log_deny(Decision.deny(account.id, DenyReason.ACCOUNT_SUSPENDED))

        resolved_id = resolved.primary.id if resolved is not None else None
        if not account.allows(requested_model, resolved_id):
            return self._log_deny(Decision.deny(account.id, DenyReason.MODEL_NOT_ALLOWED))

        # 第 5 项不依赖计数，锁外算好，仅在配额检查通过后生效
        veto: DenyReason | None = None
        cost: float | None = None
        if resolved is not None:
            cap = account.price_cap_for(resolved.primary.id) or account.price_cap_for(
                requested_model
            )
            cost = expected_cost(resolved, estimated_tokens)
            if cap is not None and cost > cap.max_cents:
                veto = DenyReason.PRICE_CAP_EXCEEDED

        outcome = self.ledger.try_reserve(
            account.id,
            estimated_tokens,
            req_per_day=account.req_per_day,
            tokens_per_day=account.tokens_per_day,
            veto=veto,
        )
        if isinstance(outcome, DenyReason):
            return self._log_deny(
                Decision.deny(
                    account.id,
                    outcome,
                    estimated_tokens=estimated_tokens,
                    expected_cost=cost,
                )
            )

        return Decision(
            allowed=True,
            account_id=account.id,
            reservation=outcome,
            estimated_tokens=estimated_tokens,
            expected_cost=cost,
        )

    def commit(
        self,
        account_id: str,
        tokens_used_total: int,
        reservation: QuotaReservation | None = None,
    ) -> bool:
        """记入当日用量

        带 reservation 时结算该预占（每个预占至多一次，重复调用返回 False）；
        不带时直接累加当日计数。
        """
        if reservation is None:
            self.ledger.add_usage(account_id, tokens_used_total)
            return True
        settled = self.ledger.settle(reservation, tokens_used_total)
        if not settled:
            log.warning("quota_commit_ignored", account_id=account_id, reservation=reservation.id)
        return settled

    def within_price_caps(
        self,
        account: Account,
        resolved: ResolvedTarget,
        estimated_tokens: int,
    ) -> ResolvedTarget:
        """去掉预估成本超出账户价格上限的 fallback 候选（主目标已在 authorize 中检查）"""
        kept: list[ModelEntry] = []
        for entry in resolved.fallbacks:
            cap = account.price_cap_for(entry.id)
            if cap is not None and cost_bound(entry, estimated_tokens) > cap.max_cents:
                log.info("fallback_over_price_cap", account_id=account.id, model_id=entry.id)
                continue
            kept.append(entry)
        if len(kept) == len(resolved.fallbacks):
            return resolved
        return resolved.model_copy(update={"fallbacks": tuple(kept)})

    def release(self, reservation: QuotaReservation) -> bool:
        return self.ledger.release(reservation)

    def usage(self, account_id: str) -> QuotaCounter:
        return self.ledger.usage(account_id)

    @staticmethod
    def _log_deny(decision: Decision) -> Decision:
        log.info("access_denied", account_id=decision.account_id, reason=decision.reason)
        return decision

    # ---- 管理端 ----

    def get_account(self, account_id: str) -> Account | None:
        return self._accounts.get(account_id)

    def list_accounts(self) -> list[Account]:
        return sorted(self._accounts.values(), key=lambda a: a.id)

    def upsert_account(self, account: Account) -> Account:
        with self._write_lock:
            accounts = dict(self._accounts)
            accounts[account.id] = account
            self._accounts = accounts
        log.info("account_upserted", account_id=account.id)
        return account

    def _update(self, account_id: str, **changes) -> Account:
        with self._write_lock:
            current = self._accounts.get(account_id)
            if current is None:
                raise AccountNotFoundError(account_id)
            updated = Account.model_validate({**current.model_dump(), **changes})
            accounts = dict(self._accounts)
            accounts[account_id] = updated
            self._accounts = accounts
        log.info("account_updated", account_id=account_id, fields=sorted(changes))
        return updated

    def update_models(self, account_id: str, models: list[str]) -> Account:
        """更新允许模型列表（去空白、去重、排序）"""
        cleaned = sorted({m.strip() for m in models if m.strip()})
        return self._update(account_id, allowed_models=cleaned)

    def update_status(self, account_id: str, status: AccountStatus) -> Account:
        return self._update(account_id, status=status)

    def set_guardrail(self, account_id: str, prompt: str | None) -> Account:
        """设置 guardrail 提示（空白视为清除）"""
        value = prompt.strip() if prompt else None
        return self._update(account_id, guardrail_prompt=value or None)

    def update_limits(
        self,
        account_id: str,
        req_per_day=_UNSET,
        tokens_per_day=_UNSET,
        model_price_caps=_UNSET,
    ) -> Account:
        """更新配额与价格上限；未传入的字段保持不变，传入 None 表示不限"""
        changes: dict = {}
        if req_per_day is not _UNSET:
            changes["req_per_day"] = req_per_day
        if tokens_per_day is not _UNSET:
            changes["tokens_per_day"] = tokens_per_day
        if model_price_caps is not _UNSET:
            changes["model_price_caps"] = tuple(model_price_caps or ())
        return self._update(account_id, **changes)
