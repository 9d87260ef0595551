"""QuotaLedger -- 按 (account_id, UTC 日期) 分桶的配额计数

两阶段协议：
- try_reserve(): 准入时在同一临界区内检查并预占 1 个请求 + 预估 token
- settle(): 交换完成后把预占转为实际用量（每个预占最多结算一次）
- release(): 被拦截 / 失败 / 取消的请求归还预占

跨日不需要重置任务：新的 day-key 自然取代旧计数，旧桶在下次访问时清理。
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from modelgate.core.models import DenyReason, QuotaCounter
from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

log = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class QuotaReservation(BaseModel):
    """准入时的配额预占凭据"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="ULID")
    account_id: str
    day_key: str
    tokens: int = Field(ge=0, description="预占的预估 token")


@dataclass
class _Counter:
    requests_used: int = 0
    tokens_used: int = 0
    requests_reserved: int = 0
    tokens_reserved: int = 0


class QuotaLedger:
    """配额账本（单进程内存状态，所有修改在短临界区内完成）"""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, str], _Counter] = {}
        self._pending: dict[str, QuotaReservation] = {}
        self._current_day = ""

    def day_key(self) -> str:
        """当前 UTC 日期 YYYY-MM-DD"""
        return self._clock().astimezone(UTC).strftime("%Y-%m-%d")

    def _counter(self, account_id: str, day_key: str) -> _Counter:
        if day_key != self._current_day:
            self._current_day = day_key
            self._prune(day_key)
        return self._counters.setdefault((account_id, day_key), _Counter())

    def _prune(self, today: str) -> None:
        stale = [
            key
            for key, c in self._counters.items()
            if key[1] < today and c.requests_reserved == 0
        ]
        for key in stale:
            del self._counters[key]
        if stale:
            log.debug("quota_counters_pruned", count=len(stale), today=today)

    def try_reserve(
        self,
        account_id: str,
        tokens: int,
        req_per_day: int | None = None,
        tokens_per_day: int | None = None,
        veto: DenyReason | None = None,
    ) -> QuotaReservation | DenyReason:
        """检查配额并预占

        检查顺序：请求数 -> token 数 -> veto（调用方在锁外算好的后续检查结论）。

        Returns:
            QuotaReservation（准入）或 DenyReason（拒绝）
        """
        day = self.day_key()
        with self._lock:
            c = self._counter(account_id, day)
            if req_per_day is not None and c.requests_used + c.requests_reserved >= req_per_day:
                return DenyReason.REQUEST_QUOTA_EXCEEDED
            if (
                tokens_per_day is not None
                and c.tokens_used + c.tokens_reserved + tokens > tokens_per_day
            ):
                return DenyReason.TOKEN_QUOTA_EXCEEDED
            if veto is not None:
                return veto
            c.requests_reserved += 1
            c.tokens_reserved += tokens
            reservation = QuotaReservation(
                id=str(ULID()),
                account_id=account_id,
                day_key=day,
                tokens=tokens,
            )
            self._pending[reservation.id] = reservation
            return reservation

    def settle(self, reservation: QuotaReservation, tokens_used: int) -> bool:
        """预占转为实际用量；重复结算返回 False 且不改变计数"""
        with self._lock:
            if self._pending.pop(reservation.id, None) is None:
                return False
            c = self._counters.setdefault(
                (reservation.account_id, reservation.day_key), _Counter()
            )
            c.requests_reserved -= 1
            c.tokens_reserved -= reservation.tokens
            c.requests_used += 1
            c.tokens_used += tokens_used
            return True

    def release(self, reservation: QuotaReservation) -> bool:
        """归还未结算的预占"""
        with self._lock:
            if self._pending.pop(reservation.id, None) is None:
                return False
            c = self._counters.get((reservation.account_id, reservation.day_key))
            if c is not None:
                c.requests_reserved -= 1
                c.tokens_reserved -= reservation.tokens
            return True

    def add_usage(self, account_id: str, tokens_used: int, requests: int = 1) -> None:
        """直接累加当日用量（无预占）"""
        day = self.day_key()
        with self._lock:
            c = self._counter(account_id, day)
            c.requests_used += requests
            c.tokens_used += tokens_used

    def usage(self, account_id: str) -> QuotaCounter:
        """当日用量快照"""
        day = self.day_key()
        with self._lock:
            c = self._counters.get((account_id, day)) or _Counter()
            return QuotaCounter(
                account_id=account_id,
                day_key=day,
                requests_used=c.requests_used,
                tokens_used=c.tokens_used,
                requests_reserved=c.requests_reserved,
                tokens_reserved=c.tokens_reserved,
            )
