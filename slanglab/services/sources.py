"""Source rules and the process-wide cache in front of them.

Lifecycle of the cache: empty until first use, refreshed once the cached
value is older than ``source_rules_cache_ttl_s``, and invalidated whenever a
change notification arrives on the ``source_rules_channel`` Redis channel.
A failed refresh serves the previous value (and logs it) rather than
dropping to an empty rule set.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
import time
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.config import get_settings
from slanglab.core.errors import ConfigurationError, TransientBackendError
from slanglab.domain.models import SourceRule
from slanglab.persistence.db import SessionLocal
from slanglab.services.resilience import get_redis
from slanglab.services.usage import with_backend_timeout


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SourceRuleView:
    name: str
    base_url: str
    enabled: bool
    is_required: bool
    quality_score: int
    min_score: int | None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "enabled": self.enabled,
            "is_required": self.is_required,
            "quality_score": self.quality_score,
            "min_score": self.min_score,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def rule_view(row: SourceRule) -> SourceRuleView:
    return SourceRuleView(
        name=row.name,
        base_url=row.base_url,
        enabled=bool(row.enabled),
        is_required=bool(row.is_required),
        quality_score=int(row.quality_score),
        min_score=row.min_score,
        updated_at=row.updated_at,
    )


@dataclass(frozen=True)
class CachedValue(Generic[T]):
    value: T
    # Monotonic clock reading taken when the value was loaded.
    fetched_at: float


async def load_source_rules(session: AsyncSession) -> list[SourceRuleView]:
    stmt = select(SourceRule).order_by(SourceRule.quality_score.desc(), SourceRule.name)
    result = await with_backend_timeout(session.execute(stmt))
    return [rule_view(row) for row in result.scalars().all()]


async def _load_with_new_session() -> list[SourceRuleView]:
    async with SessionLocal() as session:
        return await load_source_rules(session)


class SourceRulesCache:
    def __init__(
        self,
        loader: Callable[[], Awaitable[list[SourceRuleView]]] | None = None,
        *,
        max_age_s: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._loader = loader or _load_with_new_session
        self._max_age_s = float(
            max_age_s if max_age_s is not None else get_settings().source_rules_cache_ttl_s
        )
        self._clock = clock or time.monotonic
        self._cached: CachedValue[list[SourceRuleView]] | None = None
        self._invalidated = False
        self._lock = asyncio.Lock()

    @property
    def max_age_s(self) -> float:
        return self._max_age_s

    def peek(self) -> CachedValue[list[SourceRuleView]] | None:
        return self._cached

    def is_fresh(self) -> bool:
        if self._cached is None or self._invalidated:
            return False
        return (self._clock() - self._cached.fetched_at) < self._max_age_s

    def invalidate(self) -> None:
        # Keep the old value as a fallback; the next read refreshes.
        self._invalidated = True
        logger.info("source_rules_cache_invalidated")

    async def get(self) -> list[SourceRuleView]:
        if self.is_fresh():
            return self._cached.value
        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self.is_fresh():
                return self._cached.value
            try:
                rules = await self._loader()
            except TransientBackendError as exc:
                if self._cached is None:
                    raise
                logger.warning(
                    "source_rules_refresh_failed serving_stale=true age_s=%.1f error=%s",
                    self._clock() - self._cached.fetched_at,
                    exc,
                )
                return self._cached.value
            self._cached = CachedValue(value=list(rules), fetched_at=self._clock())
            self._invalidated = False
            return self._cached.value


_source_rules_cache: SourceRulesCache | None = None


def get_source_rules_cache() -> SourceRulesCache:
    # One cache per process; the API lifespan and the worker both start its listener.
    global _source_rules_cache
    if _source_rules_cache is None:
        _source_rules_cache = SourceRulesCache()
    return _source_rules_cache


def reset_source_rules_cache() -> None:
    # Reset cached rules for deterministic tests.
    global _source_rules_cache
    _source_rules_cache = None


def enabled_rules(rules: Iterable[SourceRuleView]) -> list[SourceRuleView]:
    return [rule for rule in rules if rule.enabled]


def minimum_score_threshold(
    rules: Iterable[SourceRuleView],
    *,
    default_min_score: int | None = None,
) -> int:
    # Use the loosest floor so no enabled source's sightings are under-counted.
    default = default_min_score if default_min_score is not None else get_settings().default_min_score
    active = enabled_rules(rules)
    if not active:
        raise ConfigurationError("No enabled source rules")
    return min(rule.min_score if rule.min_score is not None else default for rule in active)


def resolve_min_score(
    rules: Iterable[SourceRuleView],
    *,
    default_min_score: int | None = None,
) -> int:
    default = default_min_score if default_min_score is not None else get_settings().default_min_score
    try:
        return minimum_score_threshold(rules, default_min_score=default)
    except ConfigurationError:
        logger.error("no_enabled_sources fallback_min_score=%s", default)
        return default


def select_active_sources(
    rules: Iterable[SourceRuleView],
    max_sources: int | None = None,
) -> list[SourceRuleView]:
    # All required sources, then the best optional ones until the cap is reached.
    cap = max_sources if max_sources is not None else get_settings().max_active_sources
    ranked = sorted(enabled_rules(rules), key=lambda rule: (-rule.quality_score, rule.name))
    required = [rule for rule in ranked if rule.is_required]
    optional = [rule for rule in ranked if not rule.is_required]
    slots = max(0, cap - len(required))
    return required + optional[:slots]


async def current_min_score() -> int:
    rules = await get_source_rules_cache().get()
    return resolve_min_score(rules)


async def update_source_rule(
    session: AsyncSession,
    name: str,
    changes: dict[str, Any],
) -> SourceRuleView | None:
    # Apply an admin edit, then invalidate locally and notify other processes.
    row = await session.get(SourceRule, name)
    if row is None:
        return None
    for field_name, value in changes.items():
        setattr(row, field_name, value)
    await session.commit()
    await session.refresh(row)
    get_source_rules_cache().invalidate()
    await publish_source_rules_changed(name=name)
    return rule_view(row)


async def publish_source_rules_changed(*, name: str | None = None, redis: Redis | None = None) -> bool:
    # Best effort: a missed notification is bounded by the cache TTL.
    client = redis or await get_redis()
    if client is None:
        return False
    try:
        await client.publish(get_settings().source_rules_channel, name or "*")
    except Exception as exc:  # noqa: BLE001 - Redis might be unavailable in dev
        logger.warning("source_rules_publish_failed name=%s", name, exc_info=exc)
        return False
    return True


async def listen_for_source_rule_changes(cache: SourceRulesCache, redis: Redis) -> None:
    # Invalidate on every message until cancelled.
    pubsub = redis.pubsub()
    await pubsub.subscribe(get_settings().source_rules_channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            logger.info("source_rules_change_received source=%s", message.get("data"))
            cache.invalidate()
    finally:
        await pubsub.unsubscribe(get_settings().source_rules_channel)
        await pubsub.aclose()


async def start_source_rules_listener(cache: SourceRulesCache | None = None) -> asyncio.Task | None:
    # Start the listener only when Redis answers; otherwise rely on the TTL.
    redis = await get_redis()
    if redis is None:
        return None
    try:
        await redis.ping()
    except Exception as exc:  # noqa: BLE001 - Redis might be unavailable in dev
        logger.warning("source_rules_listener_disabled", exc_info=exc)
        return None
    return asyncio.create_task(listen_for_source_rule_changes(cache or get_source_rules_cache(), redis))
