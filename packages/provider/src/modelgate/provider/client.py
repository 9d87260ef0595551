"""上游 LLM 客户端 -- 统一 chat / chat_stream 接口

LiteLLMClient 通过 litellm.acompletion() 直连 provider，或经由 LiteLLM Proxy 调用。
所有上游异常在此归类为 UpstreamRetryableError / UpstreamFatalError / ProxyUnreachableError，
错误消息只保留模型 ID、异常类型与状态码。
"""

import time
from collections.abc import AsyncIterator
from typing import Protocol

import httpx
import structlog
from litellm import acompletion

from .cost import CostTracker
from .exceptions import (
    ProviderError,
    ProxyUnreachableError,
    UpstreamFatalError,
    UpstreamRetryableError,
)
from .models import ModelCallResult, StreamChunk, TokenUsage

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常类型集合
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
)

_RETRYABLE_ERROR_NAMES = {
    "RateLimitError",
    "ServiceUnavailableError",
    "InternalServerError",
    "Timeout",
    "APITimeoutError",
    "APIConnectionError",
}

_FATAL_ERROR_NAMES = {
    "AuthenticationError",
    "BadRequestError",
    "NotFoundError",
    "PermissionDeniedError",
    "ContextWindowExceededError",
    "ContentPolicyViolationError",
    "UnprocessableEntityError",
    "UnsupportedParamsError",
}


class ChatClient(Protocol):
    """Router 依赖的上游客户端协议"""

    async def chat(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        provider: str = "",
    ) -> ModelCallResult:
        """非流式调用"""
        ...

    def chat_stream(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        provider: str = "",
    ) -> AsyncIterator[StreamChunk]:
        """流式调用：若干 delta 片段 + 最后一个携带 result 的片段"""
        ...


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误"""
    if isinstance(e, _CONNECTION_ERROR_TYPES):
        return True
    error_name = type(e).__name__
    return error_name in ("APIConnectionError", "APITimeoutError")


def _status_code(e: Exception) -> int | None:
    code = getattr(e, "status_code", None)
    return code if isinstance(code, int) else None


def classify_error(e: Exception, model_id: str, proxy_url: str = "") -> ProviderError:
    """将上游异常归类为 ProviderError 子类

    规则：429 / 5xx / 超时 / 连接错误 -> 可重试；其他 4xx -> 不可重试；
    无法识别的异常按可重试处理。
    """
    if isinstance(e, ProviderError):
        return e

    status = _status_code(e)
    name = type(e).__name__
    label = f"{model_id}: {name}" + (f" ({status})" if status is not None else "")

    if status is not None:
        if status == 429 or status >= 500:
            return UpstreamRetryableError(label, status_code=status)
        if 400 <= status < 500:
            return UpstreamFatalError(label, status_code=status)

    if _is_connection_error(e):
        if proxy_url:
            return ProxyUnreachableError(proxy_url=proxy_url, original_error=e)
        return UpstreamRetryableError(label)

    if name in _FATAL_ERROR_NAMES:
        return UpstreamFatalError(label)
    return UpstreamRetryableError(label)


class LiteLLMClient:
    """LiteLLM 客户端

    proxy_base_url 为空时按 "{provider}/{model_id}" 直连 provider
    （provider API key 由 LiteLLM 从各自的环境变量读取）；
    否则以 "litellm_proxy/{model_id}" 经由 Proxy 调用。
    """

    def __init__(
        self,
        proxy_base_url: str = "",
        proxy_api_key: str = "",
        timeout_s: int = 30,
    ) -> None:
        """初始化客户端

        Args:
            proxy_base_url: Proxy 基础 URL，空字符串表示直连
            proxy_api_key: Proxy 访问密钥（LITELLM_PROXY_KEY）
            timeout_s: 请求超时（秒）
        """
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._proxy_api_key = proxy_api_key
        self._timeout_s = timeout_s

    @property
    def uses_proxy(self) -> bool:
        return bool(self._proxy_base_url)

    def _call_kwargs(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None,
        max_tokens: int | None,
        provider: str,
    ) -> dict:
        kwargs: dict = {"messages": messages, "timeout": self._timeout_s}
        if self.uses_proxy:
            kwargs["model"] = f"litellm_proxy/{model_id}"
            kwargs["api_base"] = self._proxy_base_url
            kwargs["api_key"] = self._proxy_api_key or "no-key"
        else:
            kwargs["model"] = f"{provider}/{model_id}" if provider else model_id
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        return kwargs

    async def chat(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        provider: str = "",
    ) -> ModelCallResult:
        """发送 chat completion 请求

        Returns:
            ModelCallResult

        Raises:
            ProviderError: 归类后的上游错误
        """
        start_time = time.monotonic()
        call_kwargs = self._call_kwargs(model_id, messages, temperature, max_tokens, provider)

        log.debug("litellm_call_start", model_id=model_id, message_count=len(messages))

        try:
            response = await acompletion(**call_kwargs)
        except Exception as e:
            error = classify_error(e, model_id, self._proxy_base_url)
            log.warning(
                "litellm_call_failed",
                model_id=model_id,
                error_type=type(e).__name__,
                retryable=error.retryable,
                status_code=error.status_code,
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
            raise error from e

        latency_ms = int((time.monotonic() - start_time) * 1000)
        content = response.choices[0].message.content or ""
        token_usage = CostTracker.parse_usage(response)

        log.info(
            "litellm_call_completed",
            model_id=model_id,
            provider=provider,
            latency_ms=latency_ms,
            tokens_in=token_usage.prompt_tokens,
            tokens_out=token_usage.completion_tokens,
        )

        return ModelCallResult(
            content=content,
            model_id=model_id,
            provider=provider,
            latency_ms=latency_ms,
            token_usage=token_usage,
        )

    async def chat_stream(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        provider: str = "",
    ) -> AsyncIterator[StreamChunk]:
        """流式 chat completion

        上游未返回 usage 时，用 token 计数兜底。
        """
        start_time = time.monotonic()
        call_kwargs = self._call_kwargs(model_id, messages, temperature, max_tokens, provider)
        call_kwargs["stream"] = True
        call_kwargs["stream_options"] = {"include_usage": True}

        parts: list[str] = []
        usage: TokenUsage | None = None
        try:
            response = await acompletion(**call_kwargs)
            async for chunk in response:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage is not None:
                    usage = CostTracker.parse_usage(chunk)
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0].delta, "content", None)
                if delta:
                    parts.append(delta)
                    yield StreamChunk(delta=delta)
        except Exception as e:
            error = classify_error(e, model_id, self._proxy_base_url)
            log.warning(
                "litellm_stream_failed",
                model_id=model_id,
                error_type=type(e).__name__,
                retryable=error.retryable,
                status_code=error.status_code,
                emitted_chunks=len(parts),
            )
            raise error from e

        content = "".join(parts)
        if usage is None or usage.total_tokens == 0:
            usage = CostTracker.usage_from_text(messages, content, model_id)

        yield StreamChunk(
            result=ModelCallResult(
                content=content,
                model_id=model_id,
                provider=provider,
                latency_ms=int((time.monotonic() - start_time) * 1000),
                token_usage=usage,
            )
        )

    async def health_check(self) -> bool:
        """检查 LiteLLM Proxy 可达性

        发送 GET {proxy_base_url}/health/liveliness 请求；未配置 Proxy 时直接返回 True。

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        if not self.uses_proxy:
            return True
        url = f"{self._proxy_base_url}/health/liveliness"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
                return resp.status_code == 200
        except Exception as e:
            log.debug("health_check_failed", url=url, error_type=type(e).__name__)
            return False
