"""ExchangeStore SQLite 实现

exchanges 表只追加：每个完成或被拦截的对话交换一行。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import ExchangeOutcome
from ..models.exchange import ExchangeRecord


class SqliteExchangeStore:
    """ExchangeStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert_exchange(self, record: ExchangeRecord) -> None:
        """写入交换记录

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO exchanges (exchange_id, account_id, conversation_id, outcome,
                                   requested_model, selected_model, provider, attempts,
                                   used_fallback, tokens_in, tokens_out, cost, latency_ms,
                                   user_message_id, assistant_message_id,
                                   user_preview, assistant_preview, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.exchange_id,
                record.account_id,
                record.conversation_id,
                record.outcome.value,
                record.requested_model,
                record.selected_model,
                record.provider,
                json.dumps(record.attempts),
                int(record.used_fallback),
                record.tokens_in,
                record.tokens_out,
                record.cost,
                record.latency_ms,
                record.user_message_id,
                record.assistant_message_id,
                record.user_preview,
                record.assistant_preview,
                record.created_at.isoformat(),
            ),
        )

    async def get_exchange(self, exchange_id: str) -> ExchangeRecord | None:
        cursor = await self._conn.execute(
            "SELECT * FROM exchanges WHERE exchange_id = ?",
            (exchange_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def list_for_account(self, account_id: str, limit: int = 50) -> list[ExchangeRecord]:
        """按 created_at 倒序查询账户的交换记录"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM exchanges
            WHERE account_id = ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (account_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> ExchangeRecord:
        """将数据库行转换为 ExchangeRecord 模型"""
        return ExchangeRecord(
            exchange_id=row["exchange_id"],
            account_id=row["account_id"],
            conversation_id=row["conversation_id"],
            outcome=ExchangeOutcome(row["outcome"]),
            requested_model=row["requested_model"],
            selected_model=row["selected_model"],
            provider=row["provider"],
            attempts=json.loads(row["attempts"]) if row["attempts"] else [],
            used_fallback=bool(row["used_fallback"]),
            tokens_in=row["tokens_in"],
            tokens_out=row["tokens_out"],
            cost=row["cost"],
            latency_ms=row["latency_ms"],
            user_message_id=row["user_message_id"],
            assistant_message_id=row["assistant_message_id"],
            user_preview=row["user_preview"],
            assistant_preview=row["assistant_preview"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
