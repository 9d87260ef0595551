"""对话路由

POST /api/v1/chat: 非流式对话，返回 ChatResult 或 BlockedResult。
POST /api/v1/chat/stream: SSE 流式对话（start / delta / done | error；拦截时 blocked）。

调用方账户取自上游认证层注入的 X-Account-ID 请求头。
"""

import json
from contextlib import aclosing

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from modelgate.core.models import ChatRequest, StreamEventType
from modelgate.governance import AccessDeniedError
from modelgate.provider import (
    InvalidAliasError,
    RoutingError,
    RoutingExhaustedError,
    UnknownModelError,
)
from sse_starlette.sse import EventSourceResponse
from starlette.background import BackgroundTask

from ..deps import get_chat_service
from ..services.chat_service import ChatService

log = structlog.get_logger()

router = APIRouter(prefix="/api/v1")


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, **extra}},
    )


def _missing_account() -> JSONResponse:
    return _error(401, "ACCOUNT_REQUIRED", "X-Account-ID header is required")


def error_response(e: Exception) -> JSONResponse:
    """编排异常 -> HTTP 错误响应（不包含上游凭证与请求体）"""
    match e:
        case AccessDeniedError():
            return _error(403, "ACCESS_DENIED", str(e), reason=e.reason.value)
        case UnknownModelError():
            return _error(400, "UNKNOWN_MODEL", str(e))
        case InvalidAliasError():
            return _error(400, "INVALID_ALIAS", str(e))
        case RoutingError():
            return _error(400, "INVALID_ROUTE", str(e))
        case RoutingExhaustedError():
            return _error(502, "ROUTING_EXHAUSTED", str(e), attempts=e.attempts)
    raise e


@router.post("/chat")
async def chat(
    body: ChatRequest,
    x_account_id: str | None = Header(default=None),
    service: ChatService = Depends(get_chat_service),
):
    """非流式对话

    - 完成：200 + ChatResult
    - 用户输入被拦截：200 + BlockedResult（blocked=true）
    - 拒绝访问：403；模型 / alias 配置错误：400；所有候选失败：502
    """
    if not x_account_id:
        return _missing_account()
    try:
        result = await service.chat(x_account_id, body)
    except (AccessDeniedError, RoutingError, RoutingExhaustedError) as e:
        return error_response(e)
    return result.model_dump(mode="json")


@router.post("/chat/stream")
async def chat_stream(
    body: ChatRequest,
    x_account_id: str | None = Header(default=None),
    service: ChatService = Depends(get_chat_service),
):
    """SSE 流式对话

    准入与用户侧策略在建立流之前完成，失败时返回普通 JSON 错误响应。
    """
    if not x_account_id:
        return _missing_account()
    try:
        prepared = await service.prepare(x_account_id, body)
    except (AccessDeniedError, RoutingError) as e:
        return error_response(e)

    events = service.stream(prepared)

    async def event_generator():
        async with aclosing(events):
            async for event in events:
                if event.type == StreamEventType.HEARTBEAT:
                    yield {"comment": "heartbeat"}
                    continue
                yield {
                    "event": event.type.value,
                    "data": json.dumps(event.data, ensure_ascii=False),
                }

    # 客户端在首个事件前断开时 event_generator 不会启动，由后台任务归还预占
    return EventSourceResponse(event_generator(), background=BackgroundTask(events.aclose))
