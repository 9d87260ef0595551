"""SQLite 数据库初始化

PRAGMA 配置 + exchanges / policy_hits / policies 三张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# exchanges 表 DDL（完成或被拦截的对话交换，仅保存预览文本）
_EXCHANGES_DDL = """
CREATE TABLE IF NOT EXISTS exchanges (
    exchange_id          TEXT PRIMARY KEY,
    account_id           TEXT NOT NULL,
    conversation_id      TEXT,
    outcome              TEXT NOT NULL,
    requested_model      TEXT NOT NULL,
    selected_model       TEXT NOT NULL DEFAULT '',
    provider             TEXT NOT NULL DEFAULT '',
    attempts             TEXT NOT NULL DEFAULT '[]',
    used_fallback        INTEGER NOT NULL DEFAULT 0,
    tokens_in            INTEGER NOT NULL DEFAULT 0,
    tokens_out           INTEGER NOT NULL DEFAULT 0,
    cost                 REAL NOT NULL DEFAULT 0,
    latency_ms           INTEGER NOT NULL DEFAULT 0,
    user_message_id      TEXT NOT NULL,
    assistant_message_id TEXT,
    user_preview         TEXT NOT NULL DEFAULT '',
    assistant_preview    TEXT NOT NULL DEFAULT '',
    created_at           TEXT NOT NULL
);
"""

_EXCHANGES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_exchanges_account ON exchanges(account_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_exchanges_conversation ON exchanges(conversation_id);",
]

# policy_hits 表 DDL（append-only 审计记录）
_POLICY_HITS_DDL = """
CREATE TABLE IF NOT EXISTS policy_hits (
    hit_id       TEXT PRIMARY KEY,
    exchange_id  TEXT NOT NULL,
    message_id   TEXT NOT NULL,
    policy_id    TEXT NOT NULL,
    policy_name  TEXT NOT NULL,
    action       TEXT NOT NULL,
    created_at   TEXT NOT NULL,

    FOREIGN KEY (exchange_id) REFERENCES exchanges(exchange_id)
);
"""

_POLICY_HITS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_policy_hits_exchange ON policy_hits(exchange_id);",
    "CREATE INDEX IF NOT EXISTS idx_policy_hits_policy ON policy_hits(policy_id, created_at DESC);",
]

# policies 表 DDL（启动时加载到 Policy Engine）
_POLICIES_DDL = """
CREATE TABLE IF NOT EXISTS policies (
    policy_id    TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    match_type   TEXT NOT NULL,
    pattern      TEXT NOT NULL,
    action       TEXT NOT NULL,
    applies_to   TEXT NOT NULL DEFAULT 'user',
    enabled      INTEGER NOT NULL DEFAULT 1,
    created_at   TEXT NOT NULL
);
"""

_POLICIES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_policies_created_at ON policies(created_at ASC);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_EXCHANGES_DDL)
    await conn.execute(_POLICY_HITS_DDL)
    await conn.execute(_POLICIES_DDL)

    for idx_sql in _EXCHANGES_INDEXES + _POLICY_HITS_INDEXES + _POLICIES_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
