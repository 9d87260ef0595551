"""交换 + 命中记录原子事务封装

在同一 SQLite 事务内写入一条 exchange 和它的全部 policy hits，
失败时整体回滚，不会留下无主的命中记录。
"""

import aiosqlite

from ..models.exchange import ExchangeRecord
from ..models.policy import PolicyHit
from .exchange_store import SqliteExchangeStore
from .policy_hit_store import SqlitePolicyHitStore


async def record_exchange_with_hits(
    conn: aiosqlite.Connection,
    exchange_store: SqliteExchangeStore,
    hit_store: SqlitePolicyHitStore,
    record: ExchangeRecord,
    hits: list[PolicyHit],
) -> None:
    """在同一事务内原子提交交换记录和命中记录

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        exchange_store: ExchangeStore 实例
        hit_store: PolicyHitStore 实例
        record: 交换记录
        hits: 该交换中所有消息的命中记录

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    try:
        await exchange_store.insert_exchange(record)
        await hit_store.append_hits(record.exchange_id, hits)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
