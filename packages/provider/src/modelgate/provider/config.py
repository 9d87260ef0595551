"""ProviderConfig -- 上游客户端与路由配置加载

从环境变量加载配置，不硬编码 provider 凭证。
单次调用超时与重试退避参数随配置进入 Router，非法值回落到默认值。
"""

import os
from typing import Literal

import structlog
from modelgate.core.config import (
    DISPATCH_ATTEMPT_TIMEOUT_S,
    DISPATCH_MAX_ATTEMPTS,
    RETRY_BASE_DELAY_S,
    RETRY_MAX_DELAY_S,
)
from pydantic import BaseModel, Field, SecretStr

from .catalog import Catalog
from .client import ChatClient, LiteLLMClient
from .echo_adapter import EchoClient
from .health import HealthBoard
from .router import RetryPolicy, Router

log = structlog.get_logger()


class ProviderConfig(BaseModel):
    """Provider 包配置 -- 从环境变量加载

    环境变量:
        LITELLM_PROXY_URL: Proxy 地址（为空时直连各 provider）
        LITELLM_PROXY_KEY: Proxy 访问密钥
        MODELGATE_LLM_MODE: 上游模式（litellm/echo）
        MODELGATE_LLM_TIMEOUT_S: LiteLLM 客户端超时（秒，默认 30）
        MODELGATE_DISPATCH_MAX_ATTEMPTS: 单个候选模型最大调用次数
        MODELGATE_DISPATCH_ATTEMPT_TIMEOUT_S: 单次调用超时（流式为首个片段前）
        MODELGATE_RETRY_BASE_DELAY_S / MODELGATE_RETRY_MAX_DELAY_S: 退避参数
    """

    proxy_base_url: str = Field(
        default="",
        description="LiteLLM Proxy 基础 URL，空字符串表示直连 provider",
    )
    proxy_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Proxy 访问密钥（不是 LLM provider API key）",
    )
    llm_mode: Literal["litellm", "echo"] = Field(
        default="litellm",
        description="上游模式：litellm / echo",
    )
    timeout_s: int = Field(
        default=30,
        ge=1,
        description="LiteLLM 客户端超时（秒）",
    )
    max_attempts: int = Field(
        default=DISPATCH_MAX_ATTEMPTS,
        ge=1,
        description="单个候选模型最大调用次数（含首次）",
    )
    attempt_timeout_s: float = Field(
        default=DISPATCH_ATTEMPT_TIMEOUT_S,
        gt=0,
        description="Router 单次调用超时（秒）",
    )
    retry_base_delay_s: float = Field(default=RETRY_BASE_DELAY_S, ge=0)
    retry_max_delay_s: float = Field(default=RETRY_MAX_DELAY_S, ge=0)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_s=self.retry_base_delay_s,
            max_delay_s=self.retry_max_delay_s,
        )


_NUMERIC_ENV: dict[str, tuple[str, type]] = {
    "MODELGATE_LLM_TIMEOUT_S": ("timeout_s", int),
    "MODELGATE_DISPATCH_MAX_ATTEMPTS": ("max_attempts", int),
    "MODELGATE_DISPATCH_ATTEMPT_TIMEOUT_S": ("attempt_timeout_s", float),
    "MODELGATE_RETRY_BASE_DELAY_S": ("retry_base_delay_s", float),
    "MODELGATE_RETRY_MAX_DELAY_S": ("retry_max_delay_s", float),
}


def load_provider_config() -> ProviderConfig:
    """从环境变量加载 Provider 配置

    环境变量映射:
        LITELLM_PROXY_URL -> proxy_base_url (默认 "")
        LITELLM_PROXY_KEY -> proxy_api_key (默认 "")
        MODELGATE_LLM_MODE -> llm_mode (默认 "litellm")
        MODELGATE_LLM_TIMEOUT_S -> timeout_s (默认 30)
        MODELGATE_DISPATCH_* / MODELGATE_RETRY_* -> 路由重试参数

    数值无法解析时记录警告并使用默认值，不阻塞启动。

    Returns:
        ProviderConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("LITELLM_PROXY_URL"):
        kwargs["proxy_base_url"] = val

    if val := os.environ.get("LITELLM_PROXY_KEY"):
        kwargs["proxy_api_key"] = SecretStr(val)

    if val := os.environ.get("MODELGATE_LLM_MODE"):
        kwargs["llm_mode"] = val

    for env_var, (field_name, cast) in _NUMERIC_ENV.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field_name] = cast(val)
            except ValueError:
                log.warning(
                    "invalid_provider_config",
                    env_var=env_var,
                    value=val,
                    fallback=ProviderConfig.model_fields[field_name].default,
                )

    return ProviderConfig(**kwargs)


def build_client(config: ProviderConfig) -> ChatClient:
    """按 llm_mode 构建上游客户端"""
    if config.llm_mode == "echo":
        return EchoClient()
    return LiteLLMClient(
        proxy_base_url=config.proxy_base_url,
        proxy_api_key=config.proxy_api_key.get_secret_value(),
        timeout_s=config.timeout_s,
    )


def build_router(
    config: ProviderConfig,
    catalog: Catalog,
    client: ChatClient,
    health: HealthBoard | None = None,
) -> Router:
    """按配置装配 Router（重试策略 + 单次调用超时）"""
    return Router(
        catalog,
        client,
        health=health,
        retry=config.retry_policy(),
        attempt_timeout_s=config.attempt_timeout_s,
    )
