"""ModelGate Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from ..models.exchange import ExchangeRecord
from ..models.policy import PolicyHit
from .exchange_store import SqliteExchangeStore
from .policy_hit_store import SqlitePolicyHitStore
from .policy_store import SqlitePolicyStore
from .sqlite_init import init_db, verify_wal_mode
from .transaction import record_exchange_with_hits


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接

    同时实现 ExchangeRecorder 协议，供 Orchestrator 直接使用。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.exchange_store = SqliteExchangeStore(conn)
        self.policy_hit_store = SqlitePolicyHitStore(conn)
        self.policy_store = SqlitePolicyStore(conn)

    async def record(self, record: ExchangeRecord, hits: list[PolicyHit]) -> None:
        await record_exchange_with_hits(
            self.conn,
            self.exchange_store,
            self.policy_hit_store,
            record,
            hits,
        )

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteExchangeStore",
    "SqlitePolicyHitStore",
    "SqlitePolicyStore",
    "init_db",
    "verify_wal_mode",
    "record_exchange_with_hits",
]
