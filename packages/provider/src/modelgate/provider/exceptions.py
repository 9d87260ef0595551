"""Provider 异常体系

上游调用错误（可重试 / 不可重试）与路由配置错误。
错误消息只包含模型 ID、异常类型和状态码，不包含凭证或原始请求体。
"""


class ProviderError(Exception):
    """Provider 包基础异常"""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: int | None = None,
    ) -> None:
        """
        Args:
            message: 错误描述
            retryable: 是否可在同一候选上重试
            status_code: 上游 HTTP 状态码（若有）
        """
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class UpstreamRetryableError(ProviderError):
    """上游可重试错误（429 / 5xx / 超时）"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, retryable=True, status_code=status_code)


class UpstreamFatalError(ProviderError):
    """上游不可重试错误（429 以外的 4xx）

    立即耗尽当前候选，但仍允许推进到下一个 fallback 候选。
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, retryable=False, status_code=status_code)


class ProxyUnreachableError(UpstreamRetryableError):
    """LiteLLM Proxy 不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, proxy_url: str, original_error: Exception) -> None:
        """
        Args:
            proxy_url: 尝试连接的 Proxy 地址
            original_error: 原始异常（只记录类型名）
        """
        super().__init__(
            f"LiteLLM Proxy 不可达: {proxy_url} ({type(original_error).__name__})",
        )
        self.proxy_url = proxy_url
        self.original_error = original_error


class RoutingError(Exception):
    """路由配置 / 解析错误基类（不重试）"""


class UnknownModelError(RoutingError):
    """请求的名称既不是模型也不是 alias"""

    def __init__(self, requested: str) -> None:
        super().__init__(f"unknown model or alias: {requested}")
        self.requested = requested


class InvalidAliasError(RoutingError):
    """alias 配置非法（总权重为 0、目标不存在、与模型重名等）"""

    def __init__(self, alias: str, reason: str) -> None:
        super().__init__(f"invalid alias {alias}: {reason}")
        self.alias = alias
        self.reason = reason


class InvalidFallbackChainError(RoutingError):
    """fallback 链配置非法（包含自身、超长、重复、引用未知模型）"""

    def __init__(self, model_id: str, reason: str) -> None:
        super().__init__(f"invalid fallback chain for {model_id}: {reason}")
        self.model_id = model_id
        self.reason = reason


class RoutingExhaustedError(Exception):
    """所有候选均失败

    attempts 按顺序列出尝试过的模型 ID。
    """

    def __init__(self, attempts: list[str], last_error: Exception | None = None) -> None:
        detail = type(last_error).__name__ if last_error is not None else "no candidates"
        super().__init__(
            f"all candidates failed: {', '.join(attempts) or '-'} (last error: {detail})"
        )
        self.attempts = list(attempts)
        self.last_error = last_error
