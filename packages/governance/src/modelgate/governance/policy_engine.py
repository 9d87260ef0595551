"""PolicyEngine -- 内容治理规则评估

规则按创建顺序评估，只评估 enabled 且作用域匹配（applies_to 为 any 或等于 scope）的规则。

匹配：
- contains_any: 逗号分隔子串，任一出现即命中（大小写不敏感）
- contains_all: 全部子串出现才命中
- regex: 正则至少匹配一处

动作：
- flag: 记录命中，不改文本
- redact: 命中片段替换为占位符并记录命中，后续规则在脱敏后的文本上评估；
  contains_* 每个命中子串一条命中记录，regex 每处非空匹配一条；
  已插入的占位符不再参与后续匹配，零宽匹配不做替换
- block: 记录命中并立即终止评估

评估无副作用，命中记录的持久化由调用方负责。
"""

import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from modelgate.core.config import MAX_MESSAGE_CHARS, REDACTION_PLACEHOLDER
from modelgate.core.models import (
    VERDICT_SEVERITY,
    EvaluationResult,
    MatchType,
    Policy,
    PolicyAction,
    PolicyHit,
    PolicyScope,
    Verdict,
)
from ulid import ULID

from .exceptions import InvalidPolicyError

log = structlog.get_logger()

_ACTION_VERDICT: dict[PolicyAction, Verdict] = {
    PolicyAction.FLAG: Verdict.FLAGGED,
    PolicyAction.REDACT: Verdict.REDACTED,
    PolicyAction.BLOCK: Verdict.BLOCKED,
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _split_terms(pattern: str) -> list[str]:
    """逗号分隔、去空白、去空项、去重（保持顺序），统一小写"""
    seen: dict[str, None] = {}
    for part in pattern.split(","):
        term = part.strip().lower()
        if term:
            seen.setdefault(term, None)
    return list(seen)


@dataclass(frozen=True)
class CompiledPolicy:
    """预编译的规则"""

    policy: Policy
    terms: tuple[str, ...] = ()
    regex: re.Pattern[str] | None = None
    # contains_* 脱敏用：所有子串的单一交替正则（长的在前）
    term_regex: re.Pattern[str] | None = None

    def applies(self, scope: PolicyScope) -> bool:
        applies_to = self.policy.applies_to
        return applies_to == PolicyScope.ANY or scope == PolicyScope.ANY or applies_to == scope

    def matched_terms(self, segments: list[str]) -> list[str]:
        """contains_* 命中的子串；未命中返回空列表"""
        lowered = [s.lower() for s in segments]
        present = [t for t in self.terms if any(t in s for s in lowered)]
        if self.policy.match_type == MatchType.CONTAINS_ALL:
            return present if present and len(present) == len(self.terms) else []
        return present


def compile_policy(policy: Policy) -> CompiledPolicy:
    """编译规则

    Raises:
        InvalidPolicyError: 正则无法编译，或能匹配空串（脱敏会无限插入占位符）
    """
    if policy.match_type == MatchType.REGEX:
        try:
            regex = re.compile(policy.pattern)
        except re.error as e:
            raise InvalidPolicyError(policy.id, f"regex does not compile: {e}") from e
        if regex.search("") is not None:
            raise InvalidPolicyError(policy.id, "regex matches the empty string")
        return CompiledPolicy(policy=policy, regex=regex)

    terms = _split_terms(policy.pattern)
    if not terms:
        raise InvalidPolicyError(policy.id, "pattern has no terms")
    ordered = sorted(terms, key=len, reverse=True)
    term_regex = re.compile("|".join(map(re.escape, ordered)), re.IGNORECASE)
    return CompiledPolicy(policy=policy, terms=tuple(terms), term_regex=term_regex)


class PolicyEngine:
    """内容治理规则引擎

    规则集为不可变元组，管理端更新整体替换。
    """

    def __init__(
        self,
        policies: list[Policy] | None = None,
        placeholder: str = REDACTION_PLACEHOLDER,
        max_chars: int = MAX_MESSAGE_CHARS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._placeholder = placeholder
        self._max_chars = max_chars
        self._clock = clock
        self._write_lock = threading.Lock()
        self._rules: tuple[CompiledPolicy, ...] = ()
        if policies:
            self.load(policies)

    # ---- 管理端 ----

    def load(self, policies: list[Policy]) -> None:
        """整体替换规则集（按 created_at 排序，缺省时保持传入顺序）"""
        stamped = [self._stamp(p) for p in policies]
        compiled = [compile_policy(p) for p in stamped]
        compiled.sort(key=lambda c: c.policy.created_at)
        with self._write_lock:
            self._rules = tuple(compiled)
        log.info("policies_loaded", count=len(compiled))

    def upsert(self, policy: Policy) -> Policy:
        """新增或更新规则；更新时保留原创建时间（即原评估位置）"""
        with self._write_lock:
            existing = {c.policy.id: c for c in self._rules}
            if policy.id in existing:
                policy = policy.model_copy(
                    update={"created_at": existing[policy.id].policy.created_at}
                )
            else:
                policy = self._stamp(policy)
            compiled = compile_policy(policy)
            rules = [c for c in self._rules if c.policy.id != policy.id]
            rules.append(compiled)
            rules.sort(key=lambda c: c.policy.created_at)
            self._rules = tuple(rules)
        log.info("policy_upserted", policy_id=policy.id, action=policy.action)
        return policy

    def remove(self, policy_id: str) -> bool:
        with self._write_lock:
            rules = tuple(c for c in self._rules if c.policy.id != policy_id)
            removed = len(rules) != len(self._rules)
            self._rules = rules
        return removed

    def list_policies(self) -> list[Policy]:
        """按评估顺序列出规则"""
        return [c.policy for c in self._rules]

    def _stamp(self, policy: Policy) -> Policy:
        if policy.created_at is not None:
            return policy
        return policy.model_copy(update={"created_at": self._clock()})

    # ---- 评估 ----

    def evaluate(
        self,
        text: str,
        scope: PolicyScope,
        message_id: str | None = None,
    ) -> EvaluationResult:
        """评估文本

        Args:
            text: 待评估文本
            scope: user / assistant
            message_id: 命中记录关联的消息 ID，缺省时生成

        Returns:
            EvaluationResult
        """
        rules = [c for c in self._rules if c.policy.enabled and c.applies(scope)]
        return self._run(rules, text, message_id or str(ULID()))

    def test_policy(self, policy: Policy, text: str) -> EvaluationResult:
        """单条规则试运行（忽略 enabled 与作用域）

        Raises:
            InvalidPolicyError: 规则非法
        """
        return self._run([compile_policy(policy)], text, "policy-test")

    def _run(self, rules: list[CompiledPolicy], text: str, message_id: str) -> EvaluationResult:
        current = text
        redacted = False
        verdict = Verdict.PASS
        hits: list[PolicyHit] = []

        for rule in rules:
            policy = rule.policy
            count = self._apply(rule, current.split(self._placeholder))
            if count == 0:
                continue

            if policy.action == PolicyAction.REDACT:
                current, count = self._redact(rule, current)
                redacted = True
            else:
                count = 1

            now = self._clock()
            new_hits = [
                PolicyHit(
                    id=str(ULID()),
                    message_id=message_id,
                    policy_id=policy.id,
                    policy_name=policy.name,
                    action=policy.action,
                    created_at=now,
                )
                for _ in range(count)
            ]
            hits.extend(new_hits)

            rule_verdict = _ACTION_VERDICT[policy.action]
            if VERDICT_SEVERITY[rule_verdict] > VERDICT_SEVERITY[verdict]:
                verdict = rule_verdict

            if policy.action == PolicyAction.BLOCK:
                log.info("policy_blocked", policy_id=policy.id, message_id=message_id)
                return EvaluationResult(
                    verdict=Verdict.BLOCKED,
                    redacted_text=current[: self._max_chars] if redacted else None,
                    hits=hits,
                    blocked_by=new_hits[0],
                )

        if hits:
            log.debug(
                "policy_evaluated",
                message_id=message_id,
                verdict=verdict,
                hits=len(hits),
            )
        return EvaluationResult(
            verdict=verdict,
            redacted_text=current[: self._max_chars] if redacted else None,
            hits=hits,
        )

    @staticmethod
    def _apply(rule: CompiledPolicy, segments: list[str]) -> int:
        """命中数（0 表示未命中）；segments 为占位符之间的文本"""
        if rule.regex is None:
            return len(rule.matched_terms(segments))
        if rule.policy.action == PolicyAction.REDACT:
            # 零宽匹配没有可替换的片段，不算命中
            return sum(
                1 for s in segments for m in rule.regex.finditer(s) if m.end() > m.start()
            )
        return 1 if any(rule.regex.search(s) for s in segments) else 0

    def _redact(self, rule: CompiledPolicy, text: str) -> tuple[str, int]:
        """替换命中片段，返回 (新文本, 命中记录数)

        只在已有占位符之外的文本上替换，占位符本身不会被再次改写。
        """
        segments = text.split(self._placeholder)
        pattern = rule.regex or rule.term_regex
        spans = 0

        def replace(m: re.Match[str]) -> str:
            nonlocal spans
            if m.end() == m.start():
                return ""
            spans += 1
            return self._placeholder

        redacted = self._placeholder.join(pattern.sub(replace, s) for s in segments)
        if rule.regex is None:
            return redacted, len(rule.matched_terms(segments))
        return redacted, spans
