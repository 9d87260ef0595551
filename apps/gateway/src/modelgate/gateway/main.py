"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 路由组件装配 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from modelgate.core.config import get_db_path
from modelgate.core.store import StoreGroup, create_store_group
from modelgate.governance import AccountGuard, InvalidPolicyError, PolicyEngine
from modelgate.provider import (
    Catalog,
    HealthBoard,
    build_client,
    build_router,
    load_provider_config,
)

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import chat, health
from .services.chat_service import ChatService

log = structlog.get_logger()


async def load_stored_policies(store_group: StoreGroup, engine: PolicyEngine) -> int:
    """从 policies 表加载规则；非法规则记录警告后跳过

    Returns:
        成功加载的规则数
    """
    loaded = 0
    for policy in await store_group.policy_store.list_policies():
        try:
            engine.upsert(policy)
        except InvalidPolicyError as e:
            log.warning("stored_policy_invalid", policy_id=e.policy_id, reason=e.reason)
            continue
        loaded += 1
    return loaded


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期：启动时装配组件，关闭时等待持久化写入并关闭连接"""
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    provider_config = load_provider_config()
    llm_client = build_client(provider_config)
    app.state.provider_config = provider_config
    app.state.llm_client = llm_client

    catalog = Catalog()
    health_board = HealthBoard()
    model_router = build_router(provider_config, catalog, llm_client, health=health_board)
    guard = AccountGuard()
    policies = PolicyEngine()
    policy_count = await load_stored_policies(store_group, policies)

    chat_service = ChatService(model_router, guard, policies, recorder=store_group)

    app.state.catalog = catalog
    app.state.health_board = health_board
    app.state.router = model_router
    app.state.account_guard = guard
    app.state.policy_engine = policies
    app.state.chat_service = chat_service

    log.info(
        "gateway_started",
        llm_mode=provider_config.llm_mode,
        proxy_url=provider_config.proxy_base_url or None,
        models=len(catalog.list_models()),
        accounts=len(guard.list_accounts()),
        policies=policy_count,
    )

    yield

    await chat_service.drain()
    await store_group.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="ModelGate Gateway",
        version="0.1.0",
        description="LLM model router and policy gateway",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    app.include_router(chat.router, tags=["chat"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
