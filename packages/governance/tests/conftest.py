"""Governance 包测试 fixtures"""

from datetime import UTC, datetime

import pytest
from modelgate.core.models import Account, ModelEntry, ResolvedTarget
from modelgate.governance.accounts import AccountGuard
from modelgate.governance.quota import QuotaLedger


class FrozenClock:
    """可手动推进的时钟"""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 9, 0, tzinfo=UTC))


@pytest.fixture
def ledger(clock) -> QuotaLedger:
    return QuotaLedger(clock=clock)


@pytest.fixture
def gpt_x() -> ResolvedTarget:
    entry = ModelEntry(
        provider="openai",
        id="gpt-x",
        prompt_price_per_1k=1.0,
        completion_price_per_1k=3.0,
    )
    return ResolvedTarget(requested="gpt-x", primary=entry)


@pytest.fixture
def guard(ledger) -> AccountGuard:
    return AccountGuard(
        accounts=[
            Account(id="acc", allowed_models=["gpt-x"], tokens_per_day=1000),
            Account(id="limited", allowed_models=["gpt-x"], req_per_day=10),
        ],
        ledger=ledger,
    )
