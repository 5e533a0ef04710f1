from __future__ import annotations

import json

import pytest

from slanglab.core.errors import ConfigurationError
from slanglab.domain.types import Capability, Period, Plan
from slanglab.services.plans import (
    DEFAULT_PLAN_LIMITS,
    LOCKED_PLAN_LIMITS,
    UNLIMITED,
    approaching_limit,
    load_plan_limits_table,
    quota_rule_for,
    remaining_for,
    resolve_plan_limits,
    usage_percent,
)


def test_default_table_shape() -> None:
    free = DEFAULT_PLAN_LIMITS[Plan.FREE]
    assert free.searches_per_day == 3
    assert free.tracking_allowed is False
    lab_pro = DEFAULT_PLAN_LIMITS[Plan.LAB_PRO]
    assert lab_pro.searches_per_day == UNLIMITED
    assert lab_pro.ai_creations_period is Period.DAY
    assert lab_pro.tracking_allowed is True


def test_quota_rule_mapping() -> None:
    limits = DEFAULT_PLAN_LIMITS[Plan.SEARCH_PRO]
    search = quota_rule_for(limits, Capability.SEARCH)
    assert search.unlimited
    assert search.period is Period.DAY
    manual = quota_rule_for(limits, Capability.MANUAL_CREATION)
    assert manual.limit == 3
    assert manual.period is Period.WEEK
    assert quota_rule_for(limits, Capability.TRACKING) is None
    assert quota_rule_for(limits, Capability.SHARE) is None


def test_unlimited_sentinel_short_circuits_math() -> None:
    assert remaining_for(UNLIMITED, 50) is None
    assert usage_percent(50, UNLIMITED) is None
    assert approaching_limit(50, UNLIMITED) is False


def test_usage_math_for_finite_limits() -> None:
    assert remaining_for(3, 1) == 2
    assert remaining_for(3, 5) == 0
    assert usage_percent(1, 3) == 33.3
    assert usage_percent(4, 3) == 100.0
    assert usage_percent(0, 0) == 100.0
    assert approaching_limit(2, 3, ratio=0.6) is True
    assert approaching_limit(1, 3, ratio=0.8) is False


def test_override_json_replaces_table() -> None:
    raw = json.dumps(
        {
            "free": {
                "searches_per_day": 5,
                "ai_creations_limit": 2,
                "ai_creations_period": "day",
                "manual_creations_per_week": -1,
            }
        }
    )
    table = load_plan_limits_table(raw)
    assert set(table) == {Plan.FREE}
    assert table[Plan.FREE].searches_per_day == 5
    assert table[Plan.FREE].ai_creations_period is Period.DAY
    assert table[Plan.FREE].manual_creations_per_week == UNLIMITED


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        json.dumps({"platinum": {}}),
        json.dumps({"free": {"searches_per_day": 1}}),
        json.dumps({"free": "three"}),
    ],
)
def test_invalid_override_is_a_configuration_error(raw: str) -> None:
    with pytest.raises(ConfigurationError):
        load_plan_limits_table(raw)


def test_missing_row_resolves_to_locked_limits(caplog: pytest.LogCaptureFixture) -> None:
    table = {Plan.FREE: DEFAULT_PLAN_LIMITS[Plan.FREE]}
    with caplog.at_level("ERROR"):
        limits = resolve_plan_limits(table, Plan.LAB_PRO)
    assert limits == LOCKED_PLAN_LIMITS
    assert "plan_limits_missing" in caplog.text
