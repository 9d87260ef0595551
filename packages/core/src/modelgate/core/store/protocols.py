"""Store Protocol 接口定义

定义 ExchangeStore、PolicyHitStore、PolicyStore 以及 Orchestrator 使用的
ExchangeRecorder 抽象接口，使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.exchange import ExchangeRecord
from ..models.policy import Policy, PolicyHit


class ExchangeStore(Protocol):
    """Exchange 存储接口"""

    async def insert_exchange(self, record: ExchangeRecord) -> None:
        """写入交换记录（不提交）"""
        ...

    async def get_exchange(self, exchange_id: str) -> ExchangeRecord | None:
        """根据 exchange_id 查询"""
        ...


class PolicyHitStore(Protocol):
    """PolicyHit 存储接口

    命中表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_hits(self, exchange_id: str, hits: list[PolicyHit]) -> None:
        """追加命中记录（不提交）"""
        ...

    async def get_hits_for_exchange(self, exchange_id: str) -> list[PolicyHit]:
        """查询交换的所有命中记录"""
        ...


class PolicyStore(Protocol):
    """Policy 存储接口"""

    async def save_policy(self, policy: Policy) -> None: ...

    async def delete_policy(self, policy_id: str) -> bool: ...

    async def list_policies(self) -> list[Policy]: ...


class ExchangeRecorder(Protocol):
    """Orchestrator 依赖的持久化协作者（fire-and-forget）"""

    async def record(self, record: ExchangeRecord, hits: list[PolicyHit]) -> None:
        """持久化一次交换及其命中记录"""
        ...
