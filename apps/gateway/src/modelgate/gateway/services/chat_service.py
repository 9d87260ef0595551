"""ChatService -- 对话编排

单个请求的处理顺序：
1. Account Guard 准入（预占配额）；fallback 候选限定为账户允许且未超价格上限的模型
2. Policy Engine 评估最后一条用户消息（block -> 返回 BlockedResult，不触达上游）
3. 内置 PII 脱敏 + guardrail system 提示
4. Router 分发（重试 / fallback）
5. Policy Engine 评估助手输出（block -> 替换为拒绝文本）
6. 按实际使用模型计价，结算配额
7. fire-and-forget 持久化交换记录与命中记录

流式模式下上游片段边到边发，空闲时发送心跳，助手输出在流结束后整体评估。
被拦截、失败、取消的请求一律归还预占，不记用量。
"""

import asyncio
import time
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from modelgate.core.config import (
    MAX_TOKENS_CAP,
    MESSAGE_PREVIEW_LENGTH,
    PII_REDACTION_ENABLED,
    REFUSAL_MESSAGE,
    STREAM_HEARTBEAT_INTERVAL,
    TEMPERATURE_MAX,
    TEMPERATURE_MIN,
)
from modelgate.core.models import (
    Account,
    BlockedResult,
    ChatExchange,
    ChatRequest,
    ChatResult,
    DenyReason,
    ExchangeOutcome,
    ExchangeRecord,
    MessageRole,
    PolicyHit,
    PolicyScope,
    ResolvedTarget,
    StreamEvent,
    StreamEventType,
)
from modelgate.core.store.protocols import ExchangeRecorder
from modelgate.governance import (
    AccessDeniedError,
    AccountGuard,
    Decision,
    PolicyEngine,
    redact_pii,
)
from modelgate.provider import (
    CostTracker,
    RoutedChunk,
    RouteOutcome,
    Router,
    RoutingExhaustedError,
)
from ulid import ULID

log = structlog.get_logger()

# 流结束标记
_END = object()


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class PreparedExchange:
    """已通过准入与用户侧策略的交换（或已被拦截）"""

    exchange_id: str
    account: Account
    request: ChatRequest
    target: ResolvedTarget
    decision: Decision
    user_message_id: str
    upstream_messages: list[dict[str, str]] = field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    user_hits: list[PolicyHit] = field(default_factory=list)
    user_preview: str = ""
    blocked: BlockedResult | None = None
    started: float = field(default_factory=time.monotonic)


class ExchangeStream:
    """stream() 返回的事件流

    aclose() 总会归还预占：即使调用方在首个事件之前就放弃了流，
    生成器体内的 finally 从未执行，预占也不会泄漏。
    """

    def __init__(self, events: AsyncGenerator[StreamEvent, None], on_close: Callable[[], None]):
        self._events = events
        self._on_close = on_close

    def __aiter__(self) -> "ExchangeStream":
        return self

    async def __anext__(self) -> StreamEvent:
        return await anext(self._events)

    async def aclose(self) -> None:
        try:
            await self._events.aclose()
        finally:
            self._on_close()


def clamp_params(request: ChatRequest) -> tuple[float | None, int | None]:
    """temperature 裁剪到 [TEMPERATURE_MIN, TEMPERATURE_MAX]，max_tokens 裁剪到 MAX_TOKENS_CAP"""
    temperature = request.temperature
    if temperature is not None:
        temperature = min(max(temperature, TEMPERATURE_MIN), TEMPERATURE_MAX)
    max_tokens = request.max_tokens
    if max_tokens is not None:
        max_tokens = min(max_tokens, MAX_TOKENS_CAP)
    return temperature, max_tokens


def _last_user_index(messages: list[dict[str, str]]) -> int | None:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].get("role") == MessageRole.USER:
            return i
    return None


class ChatService:
    """对话编排服务"""

    def __init__(
        self,
        router: Router,
        guard: AccountGuard,
        policies: PolicyEngine,
        recorder: ExchangeRecorder | None = None,
        heartbeat_s: float = STREAM_HEARTBEAT_INTERVAL,
        pii_enabled: bool = PII_REDACTION_ENABLED,
    ) -> None:
        self._router = router
        self._guard = guard
        self._policies = policies
        self._recorder = recorder
        self._heartbeat_s = heartbeat_s
        self._pii_enabled = pii_enabled
        self._pending_records: set[asyncio.Task] = set()

    # ---- 准入 ----

    async def prepare(self, account_id: str, request: ChatRequest) -> PreparedExchange:
        """准入 + 用户侧策略

        Returns:
            PreparedExchange；blocked 非空表示用户输入被拦截（配额已归还）

        Raises:
            AccessDeniedError: 账户不存在 / 停用 / 模型不允许 / 配额或价格上限超出
            RoutingError: 模型名未知或 alias 配置非法
        """
        account = self._guard.get_account(account_id)
        if account is None:
            log.info("access_denied", account_id=account_id, reason=DenyReason.ACCOUNT_NOT_FOUND)
            raise AccessDeniedError(DenyReason.ACCOUNT_NOT_FOUND, account_id)

        target = self._router.resolve(request.model, account.allowed_models)
        temperature, max_tokens = clamp_params(request)
        messages = [m.as_dict() for m in request.messages]

        estimated = CostTracker.estimate_request_tokens(messages, target.primary.id, max_tokens)
        decision = self._guard.authorize(account, request.model, estimated, resolved=target)
        if not decision.allowed:
            raise AccessDeniedError(decision.reason, account.id)
        target = self._guard.within_price_caps(account, target, estimated)

        prepared = PreparedExchange(
            exchange_id=str(ULID()),
            account=account,
            request=request,
            target=target,
            decision=decision,
            user_message_id=str(ULID()),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        try:
            self._screen_user_content(prepared, messages)
        except BaseException:
            self._guard.release(decision.reservation)
            raise
        if prepared.blocked is not None:
            self._guard.release(decision.reservation)
        return prepared

    def _screen_user_content(
        self,
        prepared: PreparedExchange,
        messages: list[dict[str, str]],
    ) -> None:
        idx = _last_user_index(messages)
        if idx is not None:
            text = messages[idx]["content"]
            evaluation = self._policies.evaluate(
                text, PolicyScope.USER, message_id=prepared.user_message_id
            )
            prepared.user_hits = evaluation.hits
            if evaluation.blocked:
                prepared.blocked = BlockedResult(
                    exchange_id=prepared.exchange_id,
                    conversation_id=prepared.request.conversation_id,
                    policy_id=evaluation.blocked_by.policy_id,
                    policy_name=evaluation.blocked_by.policy_name,
                )
                # 原文不入库，只保留已脱敏部分
                prepared.user_preview = (evaluation.redacted_text or "")[:MESSAGE_PREVIEW_LENGTH]
                log.info(
                    "chat_blocked",
                    exchange_id=prepared.exchange_id,
                    account_id=prepared.account.id,
                    policy_id=prepared.blocked.policy_id,
                )
                self._record(self._blocked_record(prepared), prepared.user_hits)
                return

            if evaluation.redacted_text is not None:
                text = evaluation.redacted_text
            if self._pii_enabled:
                text, _ = redact_pii(text)
            messages[idx] = {"role": MessageRole.USER.value, "content": text}
            prepared.user_preview = text[:MESSAGE_PREVIEW_LENGTH]

        guardrail = prepared.account.guardrail_prompt
        if guardrail:
            messages.insert(0, {"role": MessageRole.SYSTEM.value, "content": guardrail})
        prepared.upstream_messages = messages

    # ---- 非流式 ----

    async def chat(self, account_id: str, request: ChatRequest) -> ChatResult | BlockedResult:
        """处理一次对话请求

        Raises:
            AccessDeniedError / RoutingError: 见 prepare()
            RoutingExhaustedError: 所有候选模型均失败
        """
        prepared = await self.prepare(account_id, request)
        if prepared.blocked is not None:
            return prepared.blocked

        try:
            outcome = await self._router.dispatch(
                prepared.target,
                prepared.upstream_messages,
                temperature=prepared.temperature,
                max_tokens=prepared.max_tokens,
            )
            return self._finish(prepared, outcome, outcome.result.content)
        finally:
            # 已结算时为 no-op
            self._guard.release(prepared.decision.reservation)

    # ---- 流式 ----

    def stream(self, prepared: PreparedExchange) -> ExchangeStream:
        """流式输出事件序列

        start -> delta* (穿插 heartbeat) -> done | error；用户输入被拦截时只有一个 blocked 事件。
        调用方负责 aclose()，未迭代就关闭同样归还预占。
        """
        return ExchangeStream(self._events(prepared), lambda: self.release(prepared))

    def release(self, prepared: PreparedExchange) -> None:
        """归还预占；已结算或已归还时为 no-op"""
        self._guard.release(prepared.decision.reservation)

    async def _events(self, prepared: PreparedExchange) -> AsyncIterator[StreamEvent]:
        if prepared.blocked is not None:
            yield StreamEvent(
                type=StreamEventType.BLOCKED,
                data=prepared.blocked.model_dump(mode="json"),
            )
            return

        yield StreamEvent(
            type=StreamEventType.START,
            data={
                "exchange_id": prepared.exchange_id,
                "conversation_id": prepared.request.conversation_id,
            },
        )

        queue: asyncio.Queue = asyncio.Queue()
        producer = asyncio.create_task(self._pump(prepared, queue))
        parts: list[str] = []
        final: StreamEvent | None = None
        try:
            while final is None:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_s)
                except TimeoutError:
                    yield StreamEvent.heartbeat()
                    continue

                if item is _END:
                    raise RoutingExhaustedError([], None)
                if isinstance(item, Exception):
                    raise item
                chunk: RoutedChunk = item
                if chunk.outcome is not None:
                    result = self._finish(prepared, chunk.outcome, "".join(parts))
                    final = StreamEvent(
                        type=StreamEventType.DONE,
                        data=result.model_dump(mode="json"),
                    )
                elif chunk.delta:
                    parts.append(chunk.delta)
                    yield StreamEvent.delta(chunk.delta)
        except RoutingExhaustedError as e:
            log.warning(
                "chat_stream_failed",
                exchange_id=prepared.exchange_id,
                attempts=e.attempts,
                emitted_chars=sum(len(p) for p in parts),
            )
            final = StreamEvent(
                type=StreamEventType.ERROR,
                data={"code": "ROUTING_EXHAUSTED", "message": str(e), "attempts": e.attempts},
            )
        finally:
            if not producer.done():
                producer.cancel()
                log.info("chat_stream_cancelled", exchange_id=prepared.exchange_id)
            await asyncio.gather(producer, return_exceptions=True)
            self._guard.release(prepared.decision.reservation)

        yield final

    async def _pump(self, prepared: PreparedExchange, queue: asyncio.Queue) -> None:
        """把 Router 流式输出搬运到队列，异常也作为队列项交给消费方"""
        stream = self._router.dispatch_stream(
            prepared.target,
            prepared.upstream_messages,
            temperature=prepared.temperature,
            max_tokens=prepared.max_tokens,
        )
        try:
            async with aclosing(stream):
                async for chunk in stream:
                    await queue.put(chunk)
        except Exception as e:
            await queue.put(e)
            return
        await queue.put(_END)

    # ---- 完成 ----

    def _finish(
        self,
        prepared: PreparedExchange,
        outcome: RouteOutcome,
        content: str,
    ) -> ChatResult:
        """助手侧策略 + 计价 + 结算 + 持久化"""
        assistant_message_id = str(ULID())
        evaluation = self._policies.evaluate(
            content, PolicyScope.ASSISTANT, message_id=assistant_message_id
        )
        if evaluation.blocked:
            content = REFUSAL_MESSAGE
        elif evaluation.redacted_text is not None:
            content = evaluation.redacted_text

        tokens_in = outcome.result.tokens_in
        tokens_out = outcome.result.tokens_out
        cost = CostTracker.compute_cost(outcome.model, tokens_in, tokens_out)
        self._guard.commit(
            prepared.account.id,
            tokens_in + tokens_out,
            prepared.decision.reservation,
        )

        trace = outcome.trace
        exchange = ChatExchange(
            exchange_id=prepared.exchange_id,
            account_id=prepared.account.id,
            request=prepared.request,
            resolved_model=trace.selected_model,
            provider=trace.provider,
            attempts=trace.attempts,
            used_fallback=trace.used_fallback,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=cost,
            latency_ms=int((time.monotonic() - prepared.started) * 1000),
        )
        result = ChatResult(
            exchange_id=exchange.exchange_id,
            conversation_id=exchange.request.conversation_id,
            content=content,
            tokens_in=exchange.tokens_in,
            tokens_out=exchange.tokens_out,
            cost=exchange.cost,
            latency_ms=exchange.latency_ms,
            routing=trace,
            moderation=evaluation.verdict,
        )

        log.info(
            "chat_completed",
            exchange_id=prepared.exchange_id,
            account_id=prepared.account.id,
            selected_model=trace.selected_model,
            attempts=trace.attempts,
            used_fallback=trace.used_fallback,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=round(cost, 6),
            moderation=evaluation.verdict,
        )

        self._record(
            ExchangeRecord(
                exchange_id=exchange.exchange_id,
                account_id=exchange.account_id,
                conversation_id=exchange.request.conversation_id,
                outcome=ExchangeOutcome.COMPLETED,
                requested_model=exchange.request.model,
                selected_model=exchange.resolved_model or "",
                provider=exchange.provider,
                attempts=exchange.attempts,
                used_fallback=exchange.used_fallback,
                tokens_in=exchange.tokens_in,
                tokens_out=exchange.tokens_out,
                cost=exchange.cost,
                latency_ms=exchange.latency_ms,
                user_message_id=prepared.user_message_id,
                assistant_message_id=assistant_message_id,
                user_preview=prepared.user_preview,
                assistant_preview=content[:MESSAGE_PREVIEW_LENGTH],
                created_at=_utc_now(),
            ),
            prepared.user_hits + evaluation.hits,
        )
        return result

    def _blocked_record(self, prepared: PreparedExchange) -> ExchangeRecord:
        return ExchangeRecord(
            exchange_id=prepared.exchange_id,
            account_id=prepared.account.id,
            conversation_id=prepared.request.conversation_id,
            outcome=ExchangeOutcome.BLOCKED,
            requested_model=prepared.request.model,
            latency_ms=int((time.monotonic() - prepared.started) * 1000),
            user_message_id=prepared.user_message_id,
            user_preview=prepared.user_preview,
            created_at=_utc_now(),
        )

    # ---- 持久化 ----

    def _record(self, record: ExchangeRecord, hits: list[PolicyHit]) -> None:
        if self._recorder is None:
            return
        task = asyncio.create_task(self._write_record(record, hits))
        self._pending_records.add(task)
        task.add_done_callback(self._pending_records.discard)

    async def _write_record(self, record: ExchangeRecord, hits: list[PolicyHit]) -> None:
        try:
            await self._recorder.record(record, hits)
        except Exception as e:
            log.error(
                "exchange_record_failed",
                exchange_id=record.exchange_id,
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """等待所有未完成的持久化写入（关闭前调用）"""
        if self._pending_records:
            await asyncio.gather(*self._pending_records, return_exceptions=True)

