"""LoggingMiddleware -- 请求级日志上下文

为每个 HTTP 请求生成 request_id，连同调用方 account_id（X-Account-ID）
绑定到 structlog contextvars，并在响应头中返回 X-Request-ID。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

ACCOUNT_HEADER = "X-Account-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(ULID())
        started = time.monotonic()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        account_id = request.headers.get(ACCOUNT_HEADER)
        if account_id:
            structlog.contextvars.bind_contextvars(account_id=account_id)

        log = structlog.get_logger()
        await log.ainfo("request_started")

        response = await call_next(request)

        await log.ainfo(
            "request_completed",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        response.headers["X-Request-ID"] = request_id
        return response
