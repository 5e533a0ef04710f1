from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Mapping

from slanglab.core.config import get_settings
from slanglab.core.errors import ConfigurationError
from slanglab.domain.types import Capability, Period, Plan, parse_plan


logger = logging.getLogger(__name__)

# Sentinel for "no limit"; must short-circuit every remaining/percentage computation.
UNLIMITED = -1


@dataclass(frozen=True)
class QuotaRule:
    # A finite or unlimited allowance for one capability within one period.
    limit: int
    period: Period

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED


@dataclass(frozen=True)
class PlanLimits:
    searches_per_day: int
    ai_creations_limit: int
    ai_creations_period: Period
    manual_creations_per_week: int
    tracking_allowed: bool
    analytics_allowed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "searches_per_day": self.searches_per_day,
            "ai_creations_limit": self.ai_creations_limit,
            "ai_creations_period": self.ai_creations_period.value,
            "manual_creations_per_week": self.manual_creations_per_week,
            "tracking_allowed": self.tracking_allowed,
            "analytics_allowed": self.analytics_allowed,
        }


DEFAULT_PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(
        searches_per_day=3,
        ai_creations_limit=1,
        ai_creations_period=Period.WEEK,
        manual_creations_per_week=3,
        tracking_allowed=False,
        analytics_allowed=False,
    ),
    Plan.SEARCH_PRO: PlanLimits(
        searches_per_day=UNLIMITED,
        ai_creations_limit=1,
        ai_creations_period=Period.WEEK,
        manual_creations_per_week=3,
        tracking_allowed=False,
        analytics_allowed=False,
    ),
    Plan.LAB_PRO: PlanLimits(
        searches_per_day=UNLIMITED,
        # LabPro meters AI creations per day rather than per week.
        ai_creations_limit=1,
        ai_creations_period=Period.DAY,
        manual_creations_per_week=UNLIMITED,
        tracking_allowed=True,
        analytics_allowed=True,
    ),
}

# Applied when a plan has no limits row; nothing metered is allowed.
LOCKED_PLAN_LIMITS = PlanLimits(
    searches_per_day=0,
    ai_creations_limit=0,
    ai_creations_period=Period.WEEK,
    manual_creations_per_week=0,
    tracking_allowed=False,
    analytics_allowed=False,
)


def _parse_limits_row(raw: Mapping[str, Any]) -> PlanLimits:
    try:
        return PlanLimits(
            searches_per_day=int(raw["searches_per_day"]),
            ai_creations_limit=int(raw["ai_creations_limit"]),
            ai_creations_period=Period(raw.get("ai_creations_period", Period.WEEK.value)),
            manual_creations_per_week=int(raw["manual_creations_per_week"]),
            tracking_allowed=bool(raw.get("tracking_allowed", False)),
            analytics_allowed=bool(raw.get("analytics_allowed", False)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid plan limits row: {raw!r}") from exc


def load_plan_limits_table(raw_json: str | None = None) -> dict[Plan, PlanLimits]:
    # Parse the optional JSON override; it replaces the default table wholesale.
    if raw_json is None:
        raw_json = get_settings().plan_limits_json
    if not raw_json:
        return dict(DEFAULT_PLAN_LIMITS)
    try:
        payload = json.loads(raw_json)
    except ValueError as exc:
        raise ConfigurationError("PLAN_LIMITS_JSON is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("PLAN_LIMITS_JSON must be an object keyed by plan name")
    table: dict[Plan, PlanLimits] = {}
    for name, row in payload.items():
        plan = parse_plan(name)
        if plan is None:
            raise ConfigurationError(f"Unknown plan in PLAN_LIMITS_JSON: {name}")
        if not isinstance(row, dict):
            raise ConfigurationError(f"Plan limits for {name} must be an object")
        table[plan] = _parse_limits_row(row)
    return table


def get_plan_limits(table: Mapping[Plan, PlanLimits], plan: Plan) -> PlanLimits:
    limits = table.get(plan)
    if limits is None:
        raise ConfigurationError(f"No plan limits configured for plan {plan.value}")
    return limits


def resolve_plan_limits(table: Mapping[Plan, PlanLimits], plan: Plan) -> PlanLimits:
    # Missing rows lock the plan instead of defaulting to anything permissive.
    try:
        return get_plan_limits(table, plan)
    except ConfigurationError:
        logger.error("plan_limits_missing plan=%s", plan.value)
        return LOCKED_PLAN_LIMITS


def quota_rule_for(limits: PlanLimits, capability: Capability) -> QuotaRule | None:
    # Map each capability to its metered allowance; unmetered capabilities return None.
    if capability is Capability.SEARCH:
        return QuotaRule(limit=limits.searches_per_day, period=Period.DAY)
    if capability is Capability.AI_CREATION:
        return QuotaRule(limit=limits.ai_creations_limit, period=limits.ai_creations_period)
    if capability is Capability.MANUAL_CREATION:
        return QuotaRule(limit=limits.manual_creations_per_week, period=Period.WEEK)
    if capability in (Capability.TRACKING, Capability.ADMIN_FEATURE, Capability.SHARE):
        return None
    raise ConfigurationError(f"Capability without quota mapping: {capability}")


def remaining_for(limit: int, used: int) -> int | None:
    if limit == UNLIMITED:
        return None
    return max(limit - used, 0)


def usage_percent(used: int, limit: int) -> float | None:
    if limit == UNLIMITED:
        return None
    if limit <= 0:
        return 100.0
    return min(100.0, round(used * 100.0 / limit, 1))


def approaching_limit(used: int, limit: int, ratio: float | None = None) -> bool:
    if limit == UNLIMITED or limit <= 0:
        return False
    if ratio is None:
        ratio = get_settings().soft_cap_ratio
    return used >= limit * ratio
