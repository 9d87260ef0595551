"""依赖注入模块 -- 通过 FastAPI Depends 注入应用级组件

组件实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from modelgate.core.store import StoreGroup
from modelgate.provider import HealthBoard

from .services.chat_service import ChatService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_health_board(request: Request) -> HealthBoard:
    return request.app.state.health_board
