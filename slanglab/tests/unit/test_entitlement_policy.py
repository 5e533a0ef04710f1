from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from slanglab.core.errors import MalformedInputError
from slanglab.domain.types import (
    PRINCIPAL_LOADING,
    AgeBand,
    Capability,
    DecisionStatus,
    DenialReason,
    Plan,
    Principal,
    Role,
)
from slanglab.services.entitlements import (
    USAGE_UNAVAILABLE,
    AccessConfig,
    evaluate,
    parse_capability,
)
from slanglab.services.plans import DEFAULT_PLAN_LIMITS, UNLIMITED, quota_rule_for


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
METERED = (Capability.SEARCH, Capability.AI_CREATION, Capability.MANUAL_CREATION)


def _member(plan: Plan = Plan.FREE, **kwargs) -> Principal:
    return Principal(user_id="u1", plan=plan, age_band=kwargs.pop("age_band", AgeBand.ADULT), **kwargs)


def _finite_cases() -> list[tuple[Plan, Capability, int]]:
    cases = []
    for plan, limits in DEFAULT_PLAN_LIMITS.items():
        for capability in METERED:
            rule = quota_rule_for(limits, capability)
            if rule is not None and not rule.unlimited:
                cases.append((plan, capability, rule.limit))
    return cases


def _unlimited_cases() -> list[tuple[Plan, Capability]]:
    cases = []
    for plan, limits in DEFAULT_PLAN_LIMITS.items():
        for capability in METERED:
            rule = quota_rule_for(limits, capability)
            if rule is not None and rule.unlimited:
                cases.append((plan, capability))
    return cases


@pytest.mark.parametrize("plan,capability", _unlimited_cases())
@pytest.mark.parametrize("used", [0, 1, 3, 10_000])
def test_unlimited_plans_never_exceed_quota(plan: Plan, capability: Capability, used: int) -> None:
    decision = evaluate(_member(plan), capability, usage=used, now=NOW)
    assert decision.allowed
    assert decision.reason is DenialReason.NONE
    assert decision.remaining is None
    assert decision.limit == UNLIMITED


@pytest.mark.parametrize("plan,capability", _unlimited_cases())
def test_unlimited_plans_ignore_failed_usage_lookup(plan: Plan, capability: Capability) -> None:
    decision = evaluate(_member(plan), capability, usage=USAGE_UNAVAILABLE, now=NOW)
    assert decision.allowed


@pytest.mark.parametrize("plan,capability,limit", _finite_cases())
def test_finite_limits_allow_below_and_deny_at_limit(plan: Plan, capability: Capability, limit: int) -> None:
    for used in range(limit):
        decision = evaluate(_member(plan), capability, usage=used, now=NOW)
        assert decision.allowed
        assert decision.remaining == limit - used
    for used in (limit, limit + 1):
        decision = evaluate(_member(plan), capability, usage=used, now=NOW)
        assert decision.status is DecisionStatus.DENIED
        assert decision.reason is DenialReason.QUOTA_EXCEEDED
        assert decision.remaining == 0


@pytest.mark.parametrize("capability", list(Capability))
@pytest.mark.parametrize("plan", list(Plan))
@pytest.mark.parametrize("usage", [0, 999, USAGE_UNAVAILABLE])
def test_admin_bypasses_every_rule(capability: Capability, plan: Plan, usage) -> None:
    admin = Principal(user_id="admin", role=Role.ADMIN, plan=plan, age_band=None)
    decision = evaluate(admin, capability, usage=usage, now=NOW)
    assert decision.allowed


def test_free_user_at_limit_then_upgraded() -> None:
    free_user = _member(Plan.FREE)
    denied = evaluate(free_user, Capability.SEARCH, usage=3, now=NOW)
    assert denied.reason is DenialReason.QUOTA_EXCEEDED
    assert denied.remaining == 0
    assert denied.to_dict()["remaining"] == 0

    upgraded = _member(Plan.SEARCH_PRO)
    allowed = evaluate(upgraded, Capability.SEARCH, usage=3, now=NOW)
    assert allowed.allowed
    assert allowed.to_dict()["remaining"] == "unlimited"


def test_loading_principal_is_pending_not_denied() -> None:
    decision = evaluate(PRINCIPAL_LOADING, Capability.SEARCH, usage=0, now=NOW)
    assert decision.status is DecisionStatus.PENDING
    assert decision.pending
    assert not decision.allowed
    assert decision.reason is DenialReason.NONE


def test_loading_principal_can_be_treated_as_anonymous() -> None:
    config = AccessConfig(allow_during_loading=True)
    decision = evaluate(PRINCIPAL_LOADING, Capability.AI_CREATION, usage=0, config=config, now=NOW)
    assert decision.reason is DenialReason.AUTHENTICATION_REQUIRED


@pytest.mark.parametrize(
    "capability",
    [Capability.AI_CREATION, Capability.MANUAL_CREATION, Capability.TRACKING, Capability.SHARE],
)
def test_anonymous_needs_authentication(capability: Capability) -> None:
    decision = evaluate(None, capability, usage=0, now=NOW)
    assert decision.reason is DenialReason.AUTHENTICATION_REQUIRED


def test_anonymous_admin_feature_needs_authentication_first() -> None:
    decision = evaluate(None, Capability.ADMIN_FEATURE, usage=0, now=NOW)
    assert decision.reason is DenialReason.AUTHENTICATION_REQUIRED


def test_anonymous_gets_one_search() -> None:
    first = evaluate(None, Capability.SEARCH, usage=0, now=NOW, anonymous_limit=1)
    assert first.allowed
    assert first.remaining == 1
    second = evaluate(None, Capability.SEARCH, usage=1, now=NOW, anonymous_limit=1)
    assert second.reason is DenialReason.QUOTA_EXCEEDED


def test_member_needs_admin_for_admin_feature() -> None:
    decision = evaluate(_member(Plan.LAB_PRO), Capability.ADMIN_FEATURE, usage=0, now=NOW)
    assert decision.reason is DenialReason.ADMIN_REQUIRED


@pytest.mark.parametrize("plan", [Plan.FREE, Plan.SEARCH_PRO])
def test_tracking_requires_lab_pro(plan: Plan) -> None:
    decision = evaluate(_member(plan), Capability.TRACKING, usage=0, now=NOW)
    assert decision.reason is DenialReason.PLAN_REQUIRED
    assert decision.required_plan is Plan.LAB_PRO
    assert evaluate(_member(Plan.LAB_PRO), Capability.TRACKING, usage=0, now=NOW).allowed


def test_access_config_can_require_a_plan() -> None:
    config = AccessConfig(requires_plan=Plan.SEARCH_PRO)
    decision = evaluate(_member(Plan.FREE), Capability.SEARCH, usage=0, config=config, now=NOW)
    assert decision.reason is DenialReason.PLAN_REQUIRED
    assert decision.required_plan is Plan.SEARCH_PRO


def test_finite_limit_fails_closed_when_usage_unavailable() -> None:
    decision = evaluate(_member(Plan.FREE), Capability.SEARCH, usage=USAGE_UNAVAILABLE, now=NOW)
    assert decision.reason is DenialReason.QUOTA_EXCEEDED
    assert decision.remaining == 0


def test_active_trial_lifts_plan_until_expiry() -> None:
    trial = _member(Plan.FREE, trial_plan=Plan.LAB_PRO, trial_ends_at=NOW + timedelta(days=2))
    assert evaluate(trial, Capability.TRACKING, usage=0, now=NOW).allowed
    expired = evaluate(trial, Capability.TRACKING, usage=0, now=NOW + timedelta(days=3))
    assert expired.reason is DenialReason.PLAN_REQUIRED


def test_trial_never_lowers_plan() -> None:
    principal = _member(Plan.LAB_PRO, trial_plan=Plan.FREE, trial_ends_at=NOW + timedelta(days=2))
    assert principal.effective_plan(NOW) is Plan.LAB_PRO


@pytest.mark.parametrize(
    "age_band,allowed",
    [(AgeBand.CHILD, False), (None, False), (AgeBand.TEEN, True), (AgeBand.ADULT, True)],
)
def test_share_is_age_restricted(age_band: AgeBand | None, allowed: bool) -> None:
    decision = evaluate(_member(Plan.FREE, age_band=age_band), Capability.SHARE, usage=0, now=NOW)
    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason is DenialReason.AGE_RESTRICTED


def test_missing_plan_row_locks_metered_capabilities() -> None:
    table = {Plan.FREE: DEFAULT_PLAN_LIMITS[Plan.FREE]}
    decision = evaluate(_member(Plan.SEARCH_PRO), Capability.SEARCH, usage=0, limits_table=table, now=NOW)
    assert decision.reason is DenialReason.QUOTA_EXCEEDED


def test_parse_capability_rejects_unknown_values() -> None:
    assert parse_capability(" Search ") is Capability.SEARCH
    with pytest.raises(MalformedInputError):
        parse_capability("teleport")
