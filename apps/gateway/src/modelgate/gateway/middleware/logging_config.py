"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时只输出本地日志。

日志中不出现对话正文：messages / content 等字段只保留长度。
"""

import logging
import os
from collections.abc import MutableMapping
from typing import Any

import structlog

# 可能携带提示词或模型输出的字段
MESSAGE_TEXT_KEYS = frozenset(
    {"messages", "content", "prompt", "completion", "delta", "guardrail_prompt", "redacted_text"}
)


def drop_message_text(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog 处理器：对话正文替换为长度摘要"""
    for key in MESSAGE_TEXT_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = f"<{len(value)} chars>"
        elif isinstance(value, list | tuple):
            event_dict[key] = f"<{len(value)} items>"
        elif value is not None:
            event_dict[key] = "<omitted>"
    return event_dict


def setup_logging() -> None:
    """初始化 structlog 配置

    MODELGATE_LOG_FORMAT 选择渲染模式：
    - "json": 结构化 JSON 输出（生产环境）
    - "dev" (默认): pretty print 可读输出

    MODELGATE_LOG_LEVEL 设置根 logger 级别（默认 INFO）。
    """
    log_format = os.environ.get("MODELGATE_LOG_FORMAT", "dev")
    log_level = os.environ.get("MODELGATE_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        drop_message_text,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # LiteLLM 自带的 INFO 日志会打印请求参数
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def setup_logfire(app=None) -> bool:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE=true 时启用（需要 LOGFIRE_TOKEN 与 apm extra），
    初始化失败时记录警告并继续使用本地日志。

    Returns:
        是否已启用
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return False
    try:
        import logfire

        logfire.configure()
        if app is not None:
            logfire.instrument_fastapi(app)
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error_type=type(e).__name__,
        )
        return False
    return True
