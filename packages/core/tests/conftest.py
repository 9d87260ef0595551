"""packages/core 测试配置 -- 核心层 fixture"""

from datetime import UTC, datetime

import pytest
from modelgate.core.models import ExchangeOutcome, ExchangeRecord


@pytest.fixture
def completed_record() -> ExchangeRecord:
    """一条完成的交换记录"""
    return ExchangeRecord(
        exchange_id="01JEXC000000000000000001",
        account_id="demo-user",
        conversation_id="conv-1",
        outcome=ExchangeOutcome.COMPLETED,
        requested_model="gpt-4.1",
        selected_model="gpt-4o-mini",
        provider="openai",
        attempts=["gpt-4-turbo-preview", "gpt-4o-mini"],
        used_fallback=True,
        tokens_in=120,
        tokens_out=80,
        cost=0.0372,
        latency_ms=850,
        user_message_id="01JMSG000000000000000001",
        assistant_message_id="01JMSG000000000000000002",
        user_preview="hello",
        assistant_preview="hi there",
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
    )
