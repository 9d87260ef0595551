"""Catalog -- 模型 / alias / fallback 链注册表

解析流程：
1. 名称命中具体模型 -> 该模型为主目标，追加其 fallback 链
2. 名称命中 alias -> 在 targets 上做累积权重抽取（[0, total_weight) 均匀随机数，
   平局按列表顺序），抽中的模型为主目标，追加其 fallback 链
3. 都不命中 -> UnknownModelError

数据以不可变快照保存；管理端更新先在副本上校验，再整体替换快照，
进行中的解析永远不会看到半更新的 alias / fallback 配置。
"""

import random
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from modelgate.core.config import MAX_FALLBACK_CHAIN
from modelgate.core.models import (
    AliasRule,
    AliasTarget,
    FallbackChain,
    ModelEntry,
    ResolvedTarget,
)

from .exceptions import InvalidAliasError, InvalidFallbackChainError, UnknownModelError

log = structlog.get_logger()


@dataclass(frozen=True)
class CatalogSnapshot:
    """Catalog 不可变快照（key 统一小写）"""

    models: dict[str, ModelEntry] = field(default_factory=dict)
    aliases: dict[str, AliasRule] = field(default_factory=dict)
    fallbacks: dict[str, FallbackChain] = field(default_factory=dict)
    version: int = 0


def _key(name: str) -> str:
    return name.strip().lower()


def _default_models() -> list[ModelEntry]:
    """默认模型（价格：美分 / 1k tokens）"""
    return [
        ModelEntry(
            provider="openai",
            id="gpt-4-turbo-preview",
            prompt_price_per_1k=0.5,
            completion_price_per_1k=4.0,
        ),
        ModelEntry(
            provider="openai",
            id="gpt-4o-mini",
            prompt_price_per_1k=0.015,
            completion_price_per_1k=0.06,
        ),
        ModelEntry(
            provider="anthropic",
            id="claude-3-5-sonnet-20240620",
            prompt_price_per_1k=0.3,
            completion_price_per_1k=3.5,
        ),
        ModelEntry(
            provider="anthropic",
            id="claude-3-haiku-20240307",
            prompt_price_per_1k=0.08,
            completion_price_per_1k=3.0,
        ),
    ]


def _single(alias: str, model_id: str) -> AliasRule:
    return AliasRule(alias=alias, targets=(AliasTarget(model_id=model_id, weight=100),))


def _default_aliases() -> list[AliasRule]:
    return [
        _single("gpt-4.1", "gpt-4-turbo-preview"),
        _single("gpt-latest", "gpt-4-turbo-preview"),
        _single("cheap", "gpt-4o-mini"),
        _single("ops-fast", "claude-3-haiku-20240307"),
        _single("claude-3.5-sonnet", "claude-3-5-sonnet-20240620"),
        _single("claude-3-haiku", "claude-3-haiku-20240307"),
    ]


def _default_fallbacks() -> list[FallbackChain]:
    return [
        FallbackChain(
            model_id="gpt-4-turbo-preview",
            chain=("gpt-4o-mini", "claude-3-5-sonnet-20240620"),
        ),
        FallbackChain(
            model_id="claude-3-5-sonnet-20240620",
            chain=("claude-3-haiku-20240307", "gpt-4o-mini"),
        ),
    ]


def build_snapshot(
    models: Iterable[ModelEntry],
    aliases: Iterable[AliasRule] = (),
    fallbacks: Iterable[FallbackChain] = (),
    version: int = 0,
) -> CatalogSnapshot:
    """校验并构建快照

    Raises:
        InvalidAliasError: alias 与模型重名、目标不是具体模型、总权重为 0
        InvalidFallbackChainError: 链包含自身、超长、重复、引用未知模型
    """
    model_map: dict[str, ModelEntry] = {}
    for entry in models:
        model_map[_key(entry.id)] = entry

    alias_map: dict[str, AliasRule] = {}
    for rule in aliases:
        name = _key(rule.alias)
        if name in model_map:
            raise InvalidAliasError(rule.alias, "name collides with a model id")
        if not rule.targets:
            raise InvalidAliasError(rule.alias, "no targets")
        for target in rule.targets:
            if _key(target.model_id) not in model_map:
                # 目标必须是具体模型，不允许 alias 链
                raise InvalidAliasError(rule.alias, f"target {target.model_id} is not a model")
        if rule.total_weight <= 0:
            raise InvalidAliasError(rule.alias, "total weight is zero")
        alias_map[name] = rule

    fallback_map: dict[str, FallbackChain] = {}
    for chain in fallbacks:
        owner = _key(chain.model_id)
        if owner not in model_map:
            raise InvalidFallbackChainError(chain.model_id, "unknown model")
        if len(chain.chain) > MAX_FALLBACK_CHAIN:
            raise InvalidFallbackChainError(
                chain.model_id, f"chain longer than {MAX_FALLBACK_CHAIN}"
            )
        seen: set[str] = set()
        for member in chain.chain:
            key = _key(member)
            if key == owner:
                raise InvalidFallbackChainError(chain.model_id, "chain lists the model itself")
            if key not in model_map:
                raise InvalidFallbackChainError(chain.model_id, f"unknown model {member}")
            if key in seen:
                raise InvalidFallbackChainError(chain.model_id, f"duplicate entry {member}")
            seen.add(key)
        if chain.chain:
            fallback_map[owner] = chain

    return CatalogSnapshot(
        models=model_map,
        aliases=alias_map,
        fallbacks=fallback_map,
        version=version,
    )


class Catalog:
    """模型注册表

    读路径无锁（读取当前快照引用）；写路径在写锁内复制、校验、替换快照。
    """

    def __init__(
        self,
        models: list[ModelEntry] | None = None,
        aliases: list[AliasRule] | None = None,
        fallbacks: list[FallbackChain] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """初始化注册表

        Args:
            models: 模型列表，None 时使用默认配置（连同默认 alias / fallback）
            aliases: alias 列表
            fallbacks: fallback 链列表
            rng: 加权抽取使用的随机源（测试时传入固定种子）
        """
        if models is None:
            models = _default_models()
            aliases = _default_aliases() if aliases is None else aliases
            fallbacks = _default_fallbacks() if fallbacks is None else fallbacks
        self._snapshot = build_snapshot(models, aliases or (), fallbacks or ())
        self._rng = rng or random.Random()
        self._write_lock = threading.Lock()

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    # ---- 解析 ----

    def resolve(
        self,
        requested: str,
        allowed_models: Iterable[str] | None = None,
    ) -> ResolvedTarget:
        """将模型名或 alias 解析为主目标 + fallback 候选

        allowed_models 非 None 时，fallback 链只保留其中列出的模型（大小写不敏感）；
        主目标不在此过滤，由 Account Guard 判定。

        Raises:
            UnknownModelError: 名称未知
            InvalidAliasError: alias 不可选（总权重为 0）
        """
        snap = self._snapshot
        key = _key(requested)

        alias_name: str | None = None
        primary = snap.models.get(key)
        if primary is None:
            rule = snap.aliases.get(key)
            if rule is None:
                raise UnknownModelError(requested)
            alias_name = rule.alias
            primary = self._draw(rule, snap)

        allowed = None if allowed_models is None else {_key(m) for m in allowed_models}
        chain = snap.fallbacks.get(_key(primary.id))
        fallbacks: list[ModelEntry] = []
        if chain is not None:
            for member in chain.chain:
                entry = snap.models.get(_key(member))
                if entry is None or entry.id == primary.id:
                    continue
                if allowed is not None and _key(entry.id) not in allowed:
                    continue
                fallbacks.append(entry)

        return ResolvedTarget(
            requested=requested,
            alias=alias_name,
            primary=primary,
            fallbacks=tuple(fallbacks),
        )

    def _draw(self, rule: AliasRule, snap: CatalogSnapshot) -> ModelEntry:
        total = rule.total_weight
        if total <= 0:
            raise InvalidAliasError(rule.alias, "total weight is zero")
        point = self._rng.randrange(total)
        cumulative = 0
        for target in rule.targets:
            cumulative += target.weight
            if point < cumulative:
                entry = snap.models.get(_key(target.model_id))
                if entry is None:
                    raise InvalidAliasError(rule.alias, f"target {target.model_id} is not a model")
                return entry
        # randrange(total) < sum(weights)，不会走到这里
        raise InvalidAliasError(rule.alias, "weighted draw out of range")

    # ---- 查询 ----

    def is_alias(self, name: str) -> bool:
        return _key(name) in self._snapshot.aliases

    def get_model(self, model_id: str) -> ModelEntry | None:
        return self._snapshot.models.get(_key(model_id))

    def get_fallbacks(self, model_id: str) -> list[str]:
        chain = self._snapshot.fallbacks.get(_key(model_id))
        return list(chain.chain) if chain is not None else []

    def list_models(self) -> list[ModelEntry]:
        """列出所有模型（按 id 排序）"""
        return sorted(self._snapshot.models.values(), key=lambda m: m.id)

    def list_aliases(self) -> list[AliasRule]:
        """列出所有 alias（按名称排序）"""
        return sorted(self._snapshot.aliases.values(), key=lambda a: a.alias)

    def list_fallbacks(self) -> list[FallbackChain]:
        return sorted(self._snapshot.fallbacks.values(), key=lambda c: c.model_id)

    # ---- 管理端更新（整体替换快照） ----

    def _swap(
        self,
        models: Iterable[ModelEntry],
        aliases: Iterable[AliasRule],
        fallbacks: Iterable[FallbackChain],
    ) -> CatalogSnapshot:
        snap = build_snapshot(models, aliases, fallbacks, version=self._snapshot.version + 1)
        self._snapshot = snap
        log.info(
            "catalog_snapshot_swapped",
            version=snap.version,
            models=len(snap.models),
            aliases=len(snap.aliases),
            fallbacks=len(snap.fallbacks),
        )
        return snap

    def upsert_model(self, entry: ModelEntry) -> ModelEntry:
        with self._write_lock:
            snap = self._snapshot
            models = dict(snap.models)
            models[_key(entry.id)] = entry
            self._swap(models.values(), snap.aliases.values(), snap.fallbacks.values())
        return entry

    def set_alias(self, rule: AliasRule) -> AliasRule:
        with self._write_lock:
            snap = self._snapshot
            aliases = dict(snap.aliases)
            aliases[_key(rule.alias)] = rule
            self._swap(snap.models.values(), aliases.values(), snap.fallbacks.values())
        return rule

    def remove_alias(self, alias: str) -> bool:
        with self._write_lock:
            snap = self._snapshot
            aliases = dict(snap.aliases)
            if aliases.pop(_key(alias), None) is None:
                return False
            self._swap(snap.models.values(), aliases.values(), snap.fallbacks.values())
        return True

    def set_fallbacks(self, model_id: str, chain: list[str]) -> FallbackChain:
        """设置某个模型的 fallback 链（空列表表示清除）"""
        new_chain = FallbackChain(model_id=model_id, chain=chain)
        with self._write_lock:
            snap = self._snapshot
            fallbacks = dict(snap.fallbacks)
            fallbacks[_key(model_id)] = new_chain
            self._swap(snap.models.values(), snap.aliases.values(), fallbacks.values())
        return new_chain

    def replace(
        self,
        models: list[ModelEntry],
        aliases: list[AliasRule],
        fallbacks: list[FallbackChain],
    ) -> CatalogSnapshot:
        """整体替换 catalog"""
        with self._write_lock:
            return self._swap(models, aliases, fallbacks)
