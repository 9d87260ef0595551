"""PolicyStore SQLite 实现

policies 表保存内容治理规则；启动时按 created_at 正序加载到 Policy Engine。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.enums import MatchType, PolicyAction, PolicyScope
from ..models.policy import Policy


class SqlitePolicyStore:
    """PolicyStore 的 SQLite 实现（写操作自动提交）"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save_policy(self, policy: Policy) -> None:
        """插入或更新规则；更新时保留原 created_at"""
        created_at = policy.created_at or datetime.now(UTC)
        await self._conn.execute(
            """
            INSERT INTO policies (policy_id, name, description, match_type, pattern,
                                  action, applies_to, enabled, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(policy_id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                match_type = excluded.match_type,
                pattern = excluded.pattern,
                action = excluded.action,
                applies_to = excluded.applies_to,
                enabled = excluded.enabled
            """,
            (
                policy.id,
                policy.name,
                policy.description,
                policy.match_type.value,
                policy.pattern,
                policy.action.value,
                policy.applies_to.value,
                int(policy.enabled),
                created_at.isoformat(),
            ),
        )
        await self._conn.commit()

    async def delete_policy(self, policy_id: str) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM policies WHERE policy_id = ?",
            (policy_id,),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def list_policies(self) -> list[Policy]:
        """查询所有规则，按 created_at 正序（即评估顺序）"""
        cursor = await self._conn.execute(
            "SELECT * FROM policies ORDER BY created_at ASC, policy_id ASC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_policy(row) for row in rows]

    @staticmethod
    def _row_to_policy(row: aiosqlite.Row) -> Policy:
        return Policy(
            id=row["policy_id"],
            name=row["name"],
            description=row["description"],
            match_type=MatchType(row["match_type"]),
            pattern=row["pattern"],
            action=PolicyAction(row["action"]),
            applies_to=PolicyScope(row["applies_to"]),
            enabled=bool(row["enabled"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
