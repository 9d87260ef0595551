"""ModelGate Provider -- 上游调用、Catalog、Router

packages/provider 的公开接口导出。
"""

# 数据模型
from .catalog import Catalog, CatalogSnapshot, build_snapshot

# 核心组件
from .client import ChatClient, LiteLLMClient, classify_error

# 配置
from .config import ProviderConfig, build_client, build_router, load_provider_config
from .cost import CostTracker
from .echo_adapter import EchoClient

# 异常
from .exceptions import (
    InvalidAliasError,
    InvalidFallbackChainError,
    ProviderError,
    ProxyUnreachableError,
    RoutingError,
    RoutingExhaustedError,
    UnknownModelError,
    UpstreamFatalError,
    UpstreamRetryableError,
)
from .health import HealthBoard
from .models import ModelCallResult, StreamChunk, TokenUsage
from .router import (
    RetryPolicy,
    RoutedChunk,
    RouteOutcome,
    Router,
    RoutingState,
    StreamInterruptedError,
    transition,
)

__all__ = [
    "ModelCallResult",
    "StreamChunk",
    "TokenUsage",
    "Catalog",
    "CatalogSnapshot",
    "build_snapshot",
    "ChatClient",
    "LiteLLMClient",
    "EchoClient",
    "classify_error",
    "CostTracker",
    "HealthBoard",
    "Router",
    "RetryPolicy",
    "RoutingState",
    "RouteOutcome",
    "RoutedChunk",
    "transition",
    "ProviderConfig",
    "build_client",
    "build_router",
    "load_provider_config",
    "ProviderError",
    "UpstreamRetryableError",
    "UpstreamFatalError",
    "ProxyUnreachableError",
    "RoutingError",
    "UnknownModelError",
    "InvalidAliasError",
    "InvalidFallbackChainError",
    "RoutingExhaustedError",
    "StreamInterruptedError",
]
