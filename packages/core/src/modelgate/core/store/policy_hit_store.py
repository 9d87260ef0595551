"""PolicyHitStore SQLite 实现

policy_hits 表 append-only：只允许插入，不允许更新或删除。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import PolicyAction
from ..models.policy import PolicyHit


class SqlitePolicyHitStore:
    """PolicyHitStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_hits(self, exchange_id: str, hits: list[PolicyHit]) -> None:
        """追加命中记录（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        if not hits:
            return
        await self._conn.executemany(
            """
            INSERT INTO policy_hits (hit_id, exchange_id, message_id, policy_id,
                                     policy_name, action, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    hit.id,
                    exchange_id,
                    hit.message_id,
                    hit.policy_id,
                    hit.policy_name,
                    hit.action.value,
                    hit.created_at.isoformat(),
                )
                for hit in hits
            ],
        )

    async def get_hits_for_exchange(self, exchange_id: str) -> list[PolicyHit]:
        """查询交换的所有命中记录，按 hit_id（ULID 时间序）正序"""
        cursor = await self._conn.execute(
            "SELECT * FROM policy_hits WHERE exchange_id = ? ORDER BY hit_id ASC",
            (exchange_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_hit(row) for row in rows]

    async def count_for_policy(self, policy_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM policy_hits WHERE policy_id = ?",
            (policy_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_hit(row: aiosqlite.Row) -> PolicyHit:
        return PolicyHit(
            id=row["hit_id"],
            message_id=row["message_id"],
            policy_id=row["policy_id"],
            policy_name=row["policy_name"],
            action=PolicyAction(row["action"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
