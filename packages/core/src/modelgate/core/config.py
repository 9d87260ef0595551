"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、路由重试参数、流式心跳间隔、请求裁剪上限、
内容治理占位符等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("MODELGATE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "MODELGATE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "modelgate.db"),
    )


def _env_flag(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


# 流式输出空闲心跳间隔（秒）
STREAM_HEARTBEAT_INTERVAL: float = float(
    os.environ.get("MODELGATE_STREAM_HEARTBEAT_INTERVAL", "20")
)

# 单个候选模型的最大调用次数（含首次）
DISPATCH_MAX_ATTEMPTS: int = int(os.environ.get("MODELGATE_DISPATCH_MAX_ATTEMPTS", "2"))

# 指数退避基础延迟与上限（秒）
RETRY_BASE_DELAY_S: float = float(os.environ.get("MODELGATE_RETRY_BASE_DELAY_S", "0.5"))
RETRY_MAX_DELAY_S: float = float(os.environ.get("MODELGATE_RETRY_MAX_DELAY_S", "4"))

# 单次非流式上游调用超时（秒）
DISPATCH_ATTEMPT_TIMEOUT_S: float = float(
    os.environ.get("MODELGATE_DISPATCH_ATTEMPT_TIMEOUT_S", "120")
)

# fallback 链长度上限（限制重试扇出）
MAX_FALLBACK_CHAIN: int = 5

# 请求裁剪
MAX_TOKENS_CAP: int = 8192
TEMPERATURE_MIN: float = 0.0
TEMPERATURE_MAX: float = 2.0

# 单条消息最大字符数（入口校验，脱敏后也不得超过）
MAX_MESSAGE_CHARS: int = int(os.environ.get("MODELGATE_MAX_MESSAGE_CHARS", "32000"))

# 未指定 max_tokens 时的输出 token 预估
DEFAULT_COMPLETION_ESTIMATE: int = int(
    os.environ.get("MODELGATE_DEFAULT_COMPLETION_ESTIMATE", "512")
)

# 脱敏占位符
REDACTION_PLACEHOLDER: str = "[REDACTED]"

# assistant 输出被策略拦截时的替换文本
REFUSAL_MESSAGE: str = os.environ.get(
    "MODELGATE_REFUSAL_MESSAGE",
    "This response was withheld by a content policy.",
)

# 是否对用户输入启用内置 PII 脱敏
PII_REDACTION_ENABLED: bool = _env_flag("MODELGATE_PII_REDACTION", True)

# 消息预览截断长度（持久化用）
MESSAGE_PREVIEW_LENGTH: int = 200
