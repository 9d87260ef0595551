"""HealthBoard -- 每个模型的健康统计

successes / failures 为单调累加计数，与更新顺序无关；
last_ok / last_latency_ms 按观测时间（wall-clock）取最后一次，
过期的并发更新不会覆盖更新的观测结果。
每个模型一个短临界区锁，不跨越任何 I/O 挂起点。
"""

import threading
from datetime import UTC, datetime

import structlog
from modelgate.core.models import HealthStat

log = structlog.get_logger()


class _HealthCell:
    """单个模型的健康计数单元"""

    __slots__ = ("lock", "provider", "successes", "failures", "last_ok", "last_latency_ms", "updated_at")

    def __init__(self, provider: str) -> None:
        self.lock = threading.Lock()
        self.provider = provider
        self.successes = 0
        self.failures = 0
        self.last_ok = False
        self.last_latency_ms: int | None = None
        self.updated_at: datetime | None = None

    def observe(self, ok: bool, latency_ms: int | None, observed_at: datetime) -> None:
        with self.lock:
            if ok:
                self.successes += 1
            else:
                self.failures += 1
            if self.updated_at is None or observed_at >= self.updated_at:
                self.last_ok = ok
                self.last_latency_ms = latency_ms
                self.updated_at = observed_at

    def to_stat(self, model_id: str) -> HealthStat:
        with self.lock:
            return HealthStat(
                model_id=model_id,
                provider=self.provider,
                successes=self.successes,
                failures=self.failures,
                last_ok=self.last_ok,
                last_latency_ms=self.last_latency_ms,
                updated_at=self.updated_at,
            )


class HealthBoard:
    """按 model_id 索引的健康计数表"""

    def __init__(self) -> None:
        self._cells: dict[str, _HealthCell] = {}
        self._cells_lock = threading.Lock()

    def _cell(self, model_id: str, provider: str = "") -> _HealthCell:
        cell = self._cells.get(model_id)
        if cell is None:
            with self._cells_lock:
                cell = self._cells.setdefault(model_id, _HealthCell(provider))
        if provider and not cell.provider:
            cell.provider = provider
        return cell

    def record_success(
        self,
        model_id: str,
        latency_ms: int,
        provider: str = "",
        observed_at: datetime | None = None,
    ) -> None:
        self._cell(model_id, provider).observe(
            True, latency_ms, observed_at or datetime.now(UTC)
        )

    def record_failure(
        self,
        model_id: str,
        latency_ms: int | None = None,
        provider: str = "",
        observed_at: datetime | None = None,
    ) -> None:
        self._cell(model_id, provider).observe(
            False, latency_ms, observed_at or datetime.now(UTC)
        )

    def get(self, model_id: str) -> HealthStat:
        """查询单个模型（未观测过的模型返回零值）"""
        cell = self._cells.get(model_id)
        if cell is None:
            return HealthStat(model_id=model_id)
        return cell.to_stat(model_id)

    def snapshot(self) -> list[HealthStat]:
        """所有已观测模型的健康统计（按 model_id 排序）"""
        with self._cells_lock:
            items = list(self._cells.items())
        return [cell.to_stat(model_id) for model_id, cell in sorted(items)]

    def reset(self, model_id: str | None = None) -> None:
        """管理端重置（None 表示全部）"""
        with self._cells_lock:
            if model_id is None:
                self._cells.clear()
            else:
                self._cells.pop(model_id, None)
        log.info("health_reset", model_id=model_id or "*")
