"""Router -- 解析 + 带重试/退避的分发 + fallback 推进

单次请求的路由是一个小型有限状态机：

    RESOLVE --Resolved--> DISPATCHING(index=0)
    DISPATCHING --CandidateSucceeded--> DONE
    DISPATCHING --CandidateExhausted--> DISPATCHING(index+1) | FAILED

transition() 是纯函数，Router 只负责执行 I/O 并把结果作为事件喂给它。
每个候选最多调用 RetryPolicy.max_attempts 次（指数退避 + full jitter），
不可重试错误直接耗尽当前候选。每个耗尽的候选记一次健康失败，
成功的候选记一次健康成功。
"""

import asyncio
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass, field, replace

import structlog
from modelgate.core.config import (
    DISPATCH_ATTEMPT_TIMEOUT_S,
    DISPATCH_MAX_ATTEMPTS,
    RETRY_BASE_DELAY_S,
    RETRY_MAX_DELAY_S,
)
from modelgate.core.models import (
    ModelEntry,
    ResolvedTarget,
    RoutingPhase,
    RoutingTrace,
    validate_transition,
)
from pydantic import BaseModel, Field

from .catalog import Catalog
from .client import ChatClient
from .exceptions import (
    ProviderError,
    RoutingExhaustedError,
    UpstreamRetryableError,
)
from .health import HealthBoard
from .models import ModelCallResult, StreamChunk

log = structlog.get_logger()


# ---- 状态机 ----


@dataclass(frozen=True)
class Resolved:
    target: ResolvedTarget


@dataclass(frozen=True)
class CandidateSucceeded:
    result: ModelCallResult


@dataclass(frozen=True)
class CandidateExhausted:
    error: Exception


RoutingEvent = Resolved | CandidateSucceeded | CandidateExhausted


@dataclass(frozen=True)
class RoutingState:
    """路由状态（不可变）"""

    phase: RoutingPhase = RoutingPhase.RESOLVE
    candidates: tuple[ModelEntry, ...] = ()
    index: int = 0
    last_error: Exception | None = None
    result: ModelCallResult | None = None

    @property
    def current(self) -> ModelEntry:
        return self.candidates[self.index]

    @property
    def used_fallback(self) -> bool:
        return self.index > 0

    @property
    def attempts(self) -> list[str]:
        """已尝试的模型 ID（FAILED 时为全部候选）"""
        if self.phase == RoutingPhase.RESOLVE:
            return []
        if self.phase == RoutingPhase.FAILED:
            return [c.id for c in self.candidates]
        return [c.id for c in self.candidates[: self.index + 1]]


class InvalidRoutingTransition(RuntimeError):
    """事件在当前阶段不合法"""


def _move(state: RoutingState, to_phase: RoutingPhase, **changes) -> RoutingState:
    if not validate_transition(state.phase, to_phase):
        raise InvalidRoutingTransition(f"{state.phase} -> {to_phase}")
    return replace(state, phase=to_phase, **changes)


def transition(state: RoutingState, event: RoutingEvent) -> RoutingState:
    """纯状态流转函数

    Raises:
        InvalidRoutingTransition: 事件与当前阶段不匹配
    """
    match event:
        case Resolved(target=target) if state.phase == RoutingPhase.RESOLVE:
            return _move(state, RoutingPhase.DISPATCHING, candidates=target.candidates, index=0)
        case CandidateSucceeded(result=result) if state.phase == RoutingPhase.DISPATCHING:
            return _move(state, RoutingPhase.DONE, result=result)
        case CandidateExhausted(error=error) if state.phase == RoutingPhase.DISPATCHING:
            if state.index + 1 < len(state.candidates):
                return _move(
                    state,
                    RoutingPhase.DISPATCHING,
                    index=state.index + 1,
                    last_error=error,
                )
            return _move(state, RoutingPhase.FAILED, last_error=error)
    raise InvalidRoutingTransition(f"{type(event).__name__} in phase {state.phase}")


# ---- 重试策略 ----


@dataclass(frozen=True)
class RetryPolicy:
    """单候选重试策略：指数退避 + full jitter"""

    max_attempts: int = DISPATCH_MAX_ATTEMPTS
    base_delay_s: float = RETRY_BASE_DELAY_S
    max_delay_s: float = RETRY_MAX_DELAY_S

    def delay(self, retry_number: int, rng: random.Random) -> float:
        """第 retry_number 次重试前的等待秒数（retry_number 从 1 开始）"""
        cap = min(self.max_delay_s, self.base_delay_s * (2 ** (retry_number - 1)))
        return rng.uniform(0, cap)


# ---- 结果 ----


class RouteOutcome(BaseModel):
    """成功路由的结果"""

    result: ModelCallResult
    model: ModelEntry = Field(description="实际使用的模型")
    attempts: list[str] = Field(description="按顺序尝试过的模型 ID")
    used_fallback: bool

    @property
    def trace(self) -> RoutingTrace:
        return RoutingTrace(
            selected_model=self.model.id,
            provider=self.model.provider,
            attempts=self.attempts,
            used_fallback=self.used_fallback,
        )


@dataclass
class RoutedChunk:
    """流式路由产出：增量文本，或最后一个携带 outcome 的片段"""

    delta: str = ""
    outcome: RouteOutcome | None = field(default=None)


class StreamInterruptedError(RoutingExhaustedError):
    """候选已开始输出后失败，无法再 fallback"""


# ---- Router ----


class Router:
    """模型路由器"""

    def __init__(
        self,
        catalog: Catalog,
        client: ChatClient,
        health: HealthBoard | None = None,
        retry: RetryPolicy | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        attempt_timeout_s: float = DISPATCH_ATTEMPT_TIMEOUT_S,
    ) -> None:
        self.catalog = catalog
        self.health = health or HealthBoard()
        self._client = client
        self._retry = retry or RetryPolicy()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._attempt_timeout_s = attempt_timeout_s

    def resolve(
        self,
        requested: str,
        allowed_models: Iterable[str] | None = None,
    ) -> ResolvedTarget:
        """委托 Catalog 解析（UnknownModelError / InvalidAliasError 直接抛出）"""
        return self.catalog.resolve(requested, allowed_models)

    async def dispatch(
        self,
        target: ResolvedTarget,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> RouteOutcome:
        """按候选顺序分发，直到成功或全部耗尽

        Raises:
            RoutingExhaustedError: 所有候选均失败
        """
        state = transition(RoutingState(), Resolved(target))
        while state.phase == RoutingPhase.DISPATCHING:
            candidate = state.current
            try:
                result = await self._call_with_retry(candidate, messages, temperature, max_tokens)
            except ProviderError as e:
                self.health.record_failure(candidate.id, provider=candidate.provider)
                log.warning(
                    "candidate_exhausted",
                    model_id=candidate.id,
                    error_type=type(e).__name__,
                    status_code=e.status_code,
                    index=state.index,
                )
                state = transition(state, CandidateExhausted(e))
                continue
            self.health.record_success(
                candidate.id, result.latency_ms, provider=candidate.provider
            )
            state = transition(state, CandidateSucceeded(result))

        if state.phase == RoutingPhase.FAILED:
            log.error("routing_exhausted", attempts=state.attempts)
            raise RoutingExhaustedError(state.attempts, state.last_error)

        return self._outcome(state)

    async def dispatch_stream(
        self,
        target: ResolvedTarget,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[RoutedChunk]:
        """流式分发

        候选输出第一个片段之前的失败按非流式规则重试 / fallback；
        之后的失败记一次健康失败并抛出 StreamInterruptedError。
        """
        state = transition(RoutingState(), Resolved(target))
        while state.phase == RoutingPhase.DISPATCHING:
            candidate = state.current
            result: ModelCallResult | None = None
            error: ProviderError | None = None
            for attempt in range(1, self._retry.max_attempts + 1):
                started = False
                try:
                    stream = self._client.chat_stream(
                        candidate.id,
                        messages,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        provider=candidate.provider,
                    )
                    async with aclosing(stream):
                        while True:
                            try:
                                chunk = await self._next_chunk(stream, candidate, started)
                            except StopAsyncIteration:
                                break
                            if chunk.result is not None:
                                result = chunk.result
                            elif chunk.delta:
                                started = True
                                yield RoutedChunk(delta=chunk.delta)
                    if result is None:
                        raise UpstreamRetryableError(f"{candidate.id}: stream ended without usage")
                    error = None
                    break
                except ProviderError as e:
                    error = e
                    if started:
                        self.health.record_failure(candidate.id, provider=candidate.provider)
                        attempts = [c.id for c in state.candidates[: state.index + 1]]
                        log.error(
                            "stream_interrupted",
                            model_id=candidate.id,
                            error_type=type(e).__name__,
                        )
                        raise StreamInterruptedError(attempts, e) from e
                    if not e.retryable or attempt >= self._retry.max_attempts:
                        break
                    await self._backoff(candidate, attempt, e)

            if error is not None:
                self.health.record_failure(candidate.id, provider=candidate.provider)
                log.warning(
                    "candidate_exhausted",
                    model_id=candidate.id,
                    error_type=type(error).__name__,
                    status_code=error.status_code,
                    index=state.index,
                )
                state = transition(state, CandidateExhausted(error))
                continue

            self.health.record_success(
                candidate.id, result.latency_ms, provider=candidate.provider
            )
            state = transition(state, CandidateSucceeded(result))

        if state.phase == RoutingPhase.FAILED:
            log.error("routing_exhausted", attempts=state.attempts, stream=True)
            raise RoutingExhaustedError(state.attempts, state.last_error)

        yield RoutedChunk(outcome=self._outcome(state))

    async def _next_chunk(
        self,
        stream: AsyncIterator[StreamChunk],
        candidate: ModelEntry,
        started: bool,
    ) -> StreamChunk:
        """取下一个上游片段；首个片段之前受单次调用超时约束"""
        if started:
            return await anext(stream)
        try:
            async with asyncio.timeout(self._attempt_timeout_s):
                return await anext(stream)
        except TimeoutError as e:
            raise UpstreamRetryableError(
                f"{candidate.id}: no output within {self._attempt_timeout_s}s"
            ) from e

    async def _call_with_retry(
        self,
        candidate: ModelEntry,
        messages: list[dict[str, str]],
        temperature: float | None,
        max_tokens: int | None,
    ) -> ModelCallResult:
        """单候选有界重试；耗尽时抛出最后一个 ProviderError"""
        attempt = 0
        while True:
            attempt += 1
            started = time.monotonic()
            try:
                return await asyncio.wait_for(
                    self._client.chat(
                        candidate.id,
                        messages,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        provider=candidate.provider,
                    ),
                    timeout=self._attempt_timeout_s,
                )
            except TimeoutError as e:
                waited_ms = int((time.monotonic() - started) * 1000)
                error: ProviderError = UpstreamRetryableError(
                    f"{candidate.id}: timed out after {waited_ms}ms"
                )
                error.__cause__ = e
            except ProviderError as e:
                error = e

            if not error.retryable or attempt >= self._retry.max_attempts:
                raise error
            await self._backoff(candidate, attempt, error)

    async def _backoff(self, candidate: ModelEntry, attempt: int, error: ProviderError) -> None:
        delay = self._retry.delay(attempt, self._rng)
        log.info(
            "candidate_retry",
            model_id=candidate.id,
            attempt=attempt,
            delay_s=round(delay, 3),
            error_type=type(error).__name__,
            status_code=error.status_code,
        )
        await self._sleep(delay)

    @staticmethod
    def _outcome(state: RoutingState) -> RouteOutcome:
        assert state.result is not None
        return RouteOutcome(
            result=state.result,
            model=state.current,
            attempts=state.attempts,
            used_fallback=state.used_fallback,
        )
