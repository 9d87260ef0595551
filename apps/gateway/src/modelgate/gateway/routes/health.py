"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查（SQLite 连通性；profile=llm 时探测 LiteLLM Proxy）。
GET /api/v1/router/health: 每个模型的调用健康统计。
"""

import structlog
from fastapi import APIRouter, Depends, Query, Request
from modelgate.provider import HealthBoard
from starlette.responses import JSONResponse

from ..deps import get_health_board

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="core（默认）仅检查 SQLite；llm / full 额外探测 LiteLLM Proxy",
    ),
):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. litellm_proxy: profile 为 llm / full 且客户端支持 health_check 时真实探测，否则 skipped
    """
    effective_profile = profile or "core"
    checks: dict[str, str] = {}
    all_ok = True

    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_sqlite_failed", error_type=type(e).__name__)
        checks["sqlite"] = f"error: {type(e).__name__}"
        all_ok = False

    checks["litellm_proxy"] = "skipped"
    if effective_profile in ("llm", "full"):
        llm_client = getattr(request.app.state, "llm_client", None)
        health_check = getattr(llm_client, "health_check", None)
        if health_check is not None:
            if await health_check():
                checks["litellm_proxy"] = "ok"
            else:
                checks["litellm_proxy"] = "unreachable"
                all_ok = False

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )


@router.get("/api/v1/router/health")
async def router_health(board: HealthBoard = Depends(get_health_board)):
    """每个模型的成功 / 失败计数与最近一次结果"""
    return {"models": [stat.model_dump(mode="json") for stat in board.snapshot()]}
