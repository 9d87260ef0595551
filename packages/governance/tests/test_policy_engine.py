"""PolicyEngine 单元测试

测试内容：
1. 三种匹配方式与大小写不敏感
2. redact 命中记录数与脱敏文本（占位符不被再次改写，零宽匹配不替换）
3. block 立即终止，后续规则不再评估
4. 作用域 / enabled 过滤
5. 非法规则拒绝
6. 规则顺序与 upsert 保留位置
"""

from datetime import UTC, datetime, timedelta

import pytest
from modelgate.core.models import MatchType, Policy, PolicyAction, PolicyScope, Verdict
from modelgate.governance.exceptions import InvalidPolicyError
from modelgate.governance.policy_engine import PolicyEngine, compile_policy

_T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _policy(
    policy_id: str,
    pattern: str,
    action: PolicyAction = PolicyAction.FLAG,
    match_type: MatchType = MatchType.CONTAINS_ANY,
    applies_to: PolicyScope = PolicyScope.USER,
    enabled: bool = True,
    order: int = 0,
) -> Policy:
    return Policy(
        id=policy_id,
        name=f"rule {policy_id}",
        match_type=match_type,
        pattern=pattern,
        action=action,
        applies_to=applies_to,
        enabled=enabled,
        created_at=_T0 + timedelta(seconds=order),
    )


class TestMatching:
    def test_contains_any_case_insensitive(self):
        engine = PolicyEngine([_policy("p1", "Secret, token")])
        result = engine.evaluate("my SECRET is safe", PolicyScope.USER)
        assert result.verdict == Verdict.FLAGGED
        assert [h.policy_id for h in result.hits] == ["p1"]
        assert result.redacted_text is None

    def test_contains_all_requires_every_term(self):
        engine = PolicyEngine(
            [_policy("p1", "alpha, beta", match_type=MatchType.CONTAINS_ALL)]
        )
        assert engine.evaluate("only alpha", PolicyScope.USER).verdict == Verdict.PASS
        assert engine.evaluate("beta and alpha", PolicyScope.USER).verdict == Verdict.FLAGGED

    def test_regex(self):
        engine = PolicyEngine(
            [_policy("p1", r"sk-[a-z0-9]{8}", match_type=MatchType.REGEX)]
        )
        assert engine.evaluate("key sk-abcd1234", PolicyScope.USER).verdict == Verdict.FLAGGED
        assert engine.evaluate("no key", PolicyScope.USER).verdict == Verdict.PASS


class TestRedact:
    def test_one_hit_per_matched_term(self):
        engine = PolicyEngine(
            [_policy("p1", "secret, password, absent", action=PolicyAction.REDACT)]
        )
        result = engine.evaluate("my Secret and password and secret", PolicyScope.USER)
        assert result.verdict == Verdict.REDACTED
        assert len(result.hits) == 2
        assert result.redacted_text == "my [REDACTED] and [REDACTED] and [REDACTED]"

    def test_one_hit_per_regex_occurrence(self):
        engine = PolicyEngine(
            [_policy("p1", r"\d{4}", action=PolicyAction.REDACT, match_type=MatchType.REGEX)]
        )
        result = engine.evaluate("pin 1234 then 5678", PolicyScope.USER)
        assert len(result.hits) == 2
        assert result.redacted_text == "pin [REDACTED] then [REDACTED]"

    def test_later_rules_see_redacted_text(self):
        engine = PolicyEngine(
            [
                _policy("r", "secret", action=PolicyAction.REDACT, order=0),
                _policy("b", "secret", action=PolicyAction.BLOCK, order=1),
            ]
        )
        result = engine.evaluate("the secret", PolicyScope.USER)
        assert result.verdict == Verdict.REDACTED
        assert result.redacted_text == "the [REDACTED]"

    def test_placeholder_not_rewritten_by_shorter_term(self):
        engine = PolicyEngine([_policy("p1", "secret, red", action=PolicyAction.REDACT)])
        result = engine.evaluate("my secret is red", PolicyScope.USER)
        assert result.redacted_text == "my [REDACTED] is [REDACTED]"
        assert len(result.hits) == 2

    def test_later_rule_does_not_match_placeholder(self):
        engine = PolicyEngine(
            [
                _policy("r", "secret", action=PolicyAction.REDACT, order=0),
                _policy("f", "redacted", order=1),
                _policy(
                    "x", r"[A-Z]+", action=PolicyAction.REDACT, match_type=MatchType.REGEX, order=2
                ),
            ]
        )
        result = engine.evaluate("the secret", PolicyScope.USER)
        assert result.redacted_text == "the [REDACTED]"
        assert [h.policy_id for h in result.hits] == ["r"]

    def test_zero_width_regex_redacts_nothing(self):
        engine = PolicyEngine(
            [_policy("z", r"(?=pw)", action=PolicyAction.REDACT, match_type=MatchType.REGEX)]
        )
        result = engine.evaluate("pw pw", PolicyScope.USER)
        assert result.verdict == Verdict.PASS
        assert result.redacted_text is None
        assert result.hits == []

    def test_zero_width_alternative_only_replaces_real_spans(self):
        engine = PolicyEngine(
            [_policy("z", r"pw\d|(?=x)", action=PolicyAction.REDACT, match_type=MatchType.REGEX)]
        )
        result = engine.evaluate("x pw1 x", PolicyScope.USER)
        assert result.redacted_text == "x [REDACTED] x"
        assert len(result.hits) == 1

    def test_redacted_text_truncated(self):
        engine = PolicyEngine(
            [_policy("p1", "x", action=PolicyAction.REDACT)], max_chars=12
        )
        result = engine.evaluate("aaaa x bbbb", PolicyScope.USER)
        assert len(result.redacted_text) == 12
        assert result.redacted_text == "aaaa [REDACT"


class TestBlock:
    def test_block_stops_evaluation(self):
        engine = PolicyEngine(
            [
                _policy("f1", "drop", order=0),
                _policy("b1", "drop table", action=PolicyAction.BLOCK, order=1),
                _policy("f2", "table", order=2),
            ]
        )
        result = engine.evaluate("please DROP TABLE users", PolicyScope.USER)
        assert result.blocked
        assert [h.policy_id for h in result.hits] == ["f1", "b1"]
        assert result.blocked_by.policy_id == "b1"

    def test_hits_share_message_id(self):
        engine = PolicyEngine([_policy("b1", "bad", action=PolicyAction.BLOCK)])
        result = engine.evaluate("bad", PolicyScope.USER, message_id="m-1")
        assert result.blocked_by.message_id == "m-1"


class TestFiltering:
    def test_scope(self):
        engine = PolicyEngine(
            [
                _policy("u", "word", applies_to=PolicyScope.USER),
                _policy("a", "word", applies_to=PolicyScope.ASSISTANT, order=1),
                _policy("any", "word", applies_to=PolicyScope.ANY, order=2),
            ]
        )
        user = engine.evaluate("word", PolicyScope.USER)
        assistant = engine.evaluate("word", PolicyScope.ASSISTANT)
        assert [h.policy_id for h in user.hits] == ["u", "any"]
        assert [h.policy_id for h in assistant.hits] == ["a", "any"]

    def test_disabled_skipped(self):
        engine = PolicyEngine([_policy("p1", "word", enabled=False)])
        assert engine.evaluate("word", PolicyScope.USER).verdict == Verdict.PASS

    def test_test_policy_ignores_enabled_and_scope(self):
        engine = PolicyEngine()
        policy = _policy("p1", "word", applies_to=PolicyScope.ASSISTANT, enabled=False)
        result = engine.test_policy(policy, "a word")
        assert result.verdict == Verdict.FLAGGED


class TestValidation:
    @pytest.mark.parametrize(
        ("pattern", "match_type"),
        [
            ("([", MatchType.REGEX),
            ("a*", MatchType.REGEX),
            (" , ,", MatchType.CONTAINS_ANY),
        ],
    )
    def test_rejects_invalid(self, pattern, match_type):
        with pytest.raises(InvalidPolicyError):
            compile_policy(_policy("bad", pattern, match_type=match_type))

    def test_invalid_policy_leaves_engine_unchanged(self):
        engine = PolicyEngine([_policy("p1", "word")])
        with pytest.raises(InvalidPolicyError):
            engine.upsert(_policy("p2", "(", match_type=MatchType.REGEX))
        assert [p.id for p in engine.list_policies()] == ["p1"]


class TestAdmin:
    def test_load_orders_by_created_at(self):
        engine = PolicyEngine([_policy("late", "x", order=5), _policy("early", "x", order=1)])
        assert [p.id for p in engine.list_policies()] == ["early", "late"]

    def test_upsert_keeps_position(self):
        engine = PolicyEngine([_policy("a", "x", order=0), _policy("b", "x", order=1)])
        engine.upsert(_policy("a", "y", action=PolicyAction.BLOCK, order=9))
        policies = engine.list_policies()
        assert [p.id for p in policies] == ["a", "b"]
        assert policies[0].pattern == "y"
        assert policies[0].created_at == _T0

    def test_upsert_new_policy_stamped(self):
        engine = PolicyEngine(clock=lambda: _T0 + timedelta(days=1))
        policy = Policy(
            id="n",
            name="n",
            match_type=MatchType.CONTAINS_ANY,
            pattern="x",
            action=PolicyAction.FLAG,
        )
        stored = engine.upsert(policy)
        assert stored.created_at == _T0 + timedelta(days=1)

    def test_remove(self):
        engine = PolicyEngine([_policy("a", "x")])
        assert engine.remove("a") is True
        assert engine.remove("a") is False
        assert engine.evaluate("x", PolicyScope.USER).verdict == Verdict.PASS
