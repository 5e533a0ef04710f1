from __future__ import annotations

import pytest

from slanglab.core.errors import ConfigurationError, TransientBackendError
from slanglab.services.sources import (
    SourceRuleView,
    SourceRulesCache,
    minimum_score_threshold,
    resolve_min_score,
    select_active_sources,
)


def _rule(name: str, *, enabled: bool = True, required: bool = False, quality: int = 50, min_score: int | None = None):
    return SourceRuleView(
        name=name,
        base_url=f"https://{name.lower()}.example",
        enabled=enabled,
        is_required=required,
        quality_score=quality,
        min_score=min_score,
    )


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _Loader:
    def __init__(self, *batches) -> None:
        self._batches = list(batches)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        batch = self._batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


async def test_cache_serves_fresh_value_until_ttl() -> None:
    clock = _Clock()
    loader = _Loader([_rule("A")], [_rule("B")])
    cache = SourceRulesCache(loader, max_age_s=300, clock=clock)

    assert [rule.name for rule in await cache.get()] == ["A"]
    clock.now = 299
    assert [rule.name for rule in await cache.get()] == ["A"]
    assert loader.calls == 1

    clock.now = 300
    assert [rule.name for rule in await cache.get()] == ["B"]
    assert loader.calls == 2


async def test_invalidate_forces_refresh() -> None:
    clock = _Clock()
    loader = _Loader([_rule("A")], [_rule("B")])
    cache = SourceRulesCache(loader, max_age_s=300, clock=clock)
    await cache.get()
    cache.invalidate()
    assert not cache.is_fresh()
    assert [rule.name for rule in await cache.get()] == ["B"]
    assert cache.is_fresh()


async def test_failed_refresh_serves_stale_value(caplog: pytest.LogCaptureFixture) -> None:
    clock = _Clock()
    loader = _Loader([_rule("A")], TransientBackendError("db down"))
    cache = SourceRulesCache(loader, max_age_s=10, clock=clock)
    await cache.get()
    clock.now = 60
    with caplog.at_level("WARNING"):
        rules = await cache.get()
    assert [rule.name for rule in rules] == ["A"]
    assert "source_rules_refresh_failed" in caplog.text


async def test_failed_first_load_propagates() -> None:
    cache = SourceRulesCache(_Loader(TransientBackendError("db down")), max_age_s=10, clock=_Clock())
    with pytest.raises(TransientBackendError):
        await cache.get()


def test_minimum_threshold_across_enabled_sources() -> None:
    rules = [
        _rule("A", min_score=70),
        _rule("B", min_score=40, enabled=False),
        _rule("C"),
    ]
    assert minimum_score_threshold(rules, default_min_score=60) == 60
    assert minimum_score_threshold(rules[:2], default_min_score=60) == 70


def test_no_enabled_sources() -> None:
    rules = [_rule("A", enabled=False)]
    with pytest.raises(ConfigurationError):
        minimum_score_threshold(rules, default_min_score=60)
    assert resolve_min_score(rules, default_min_score=55) == 55


def test_active_sources_keep_required_then_best_optional() -> None:
    rules = [
        _rule("UrbanDictionary", required=True, quality=40),
        _rule("TikTok", required=True, quality=90),
        _rule("Reddit", quality=80),
        _rule("Twitter", quality=70),
        _rule("YouTube", quality=85, enabled=False),
    ]
    active = select_active_sources(rules, max_sources=3)
    assert [rule.name for rule in active] == ["TikTok", "UrbanDictionary", "Reddit"]
