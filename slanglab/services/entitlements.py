from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.errors import MalformedInputError, TransientBackendError
from slanglab.domain.types import (
    PRINCIPAL_LOADING,
    AccessDecision,
    AgeBand,
    Capability,
    DecisionStatus,
    DenialReason,
    Plan,
    Principal,
    utc_now,
)
from slanglab.services.anonymous_quota import anonymous_search_limit, read_anonymous_searches
from slanglab.services.plans import (
    UNLIMITED,
    PlanLimits,
    QuotaRule,
    load_plan_limits_table,
    quota_rule_for,
    resolve_plan_limits,
)
from slanglab.services.usage import read_usage


logger = logging.getLogger(__name__)


class _UsageUnavailable:
    def __repr__(self) -> str:
        return "USAGE_UNAVAILABLE"


# Passed as usage when the counter lookup failed or timed out.
USAGE_UNAVAILABLE = _UsageUnavailable()


@dataclass(frozen=True)
class CapabilityRequirement:
    requires_auth: bool
    requires_admin: bool = False
    required_plan: Plan | None = None


CAPABILITY_REQUIREMENTS: dict[Capability, CapabilityRequirement] = {
    # Anonymous visitors may search against their own lifetime allowance.
    Capability.SEARCH: CapabilityRequirement(requires_auth=False),
    Capability.AI_CREATION: CapabilityRequirement(requires_auth=True),
    Capability.MANUAL_CREATION: CapabilityRequirement(requires_auth=True),
    Capability.TRACKING: CapabilityRequirement(requires_auth=True, required_plan=Plan.LAB_PRO),
    Capability.ADMIN_FEATURE: CapabilityRequirement(requires_auth=True, requires_admin=True),
    Capability.SHARE: CapabilityRequirement(requires_auth=True),
}

# Age bands allowed to publish creations outside the app.
SHARE_ALLOWED_AGE_BANDS = frozenset({AgeBand.TEEN, AgeBand.ADULT})


@dataclass(frozen=True)
class AccessConfig:
    # Per-call overrides; None keeps the capability's own requirement.
    requires_auth: bool | None = None
    requires_admin: bool | None = None
    requires_plan: Plan | None = None
    allow_during_loading: bool = False


DEFAULT_ACCESS_CONFIG = AccessConfig()


@dataclass(frozen=True)
class QuotaCheck:
    # A finite allowance that still needs the caller's current usage.
    capability: Capability
    limit: int
    rule: QuotaRule | None
    anonymous: bool = False


def parse_capability(value: str) -> Capability:
    try:
        return Capability(value.strip().lower())
    except (AttributeError, ValueError) as exc:
        raise MalformedInputError(f"Unknown capability: {value!r}") from exc


def _deny(reason: DenialReason, **kwargs: Any) -> AccessDecision:
    return AccessDecision(status=DecisionStatus.DENIED, reason=reason, **kwargs)


def _allow(**kwargs: Any) -> AccessDecision:
    return AccessDecision(status=DecisionStatus.ALLOWED, **kwargs)


def resolve_policy(
    principal: Principal | None | object,
    capability: Capability,
    *,
    limits_table: Mapping[Plan, PlanLimits],
    config: AccessConfig = DEFAULT_ACCESS_CONFIG,
    now: datetime,
    anonymous_limit: int,
) -> AccessDecision | QuotaCheck:
    # Run every rule that needs no usage; return the quota still to apply, if any.
    requirement = CAPABILITY_REQUIREMENTS[capability]
    requires_auth = requirement.requires_auth if config.requires_auth is None else config.requires_auth
    requires_admin = requirement.requires_admin if config.requires_admin is None else config.requires_admin
    required_plan = config.requires_plan or requirement.required_plan

    if principal is PRINCIPAL_LOADING:
        if not config.allow_during_loading:
            return AccessDecision(status=DecisionStatus.PENDING)
        principal = None

    if principal is None and requires_auth:
        return _deny(DenialReason.AUTHENTICATION_REQUIRED)

    # Central trust boundary: admins bypass every plan, age and quota rule.
    if principal is not None and principal.is_admin:
        return _allow(remaining=None, limit=UNLIMITED)

    if requires_admin:
        if principal is None:
            return _deny(DenialReason.AUTHENTICATION_REQUIRED)
        return _deny(DenialReason.ADMIN_REQUIRED)

    if principal is None:
        return _anonymous_policy(capability, required_plan=required_plan, anonymous_limit=anonymous_limit)

    plan = principal.effective_plan(now)
    limits = resolve_plan_limits(limits_table, plan)
    if required_plan is not None and plan.rank < required_plan.rank:
        return _deny(DenialReason.PLAN_REQUIRED, required_plan=required_plan)
    if capability is Capability.TRACKING and not limits.tracking_allowed:
        return _deny(DenialReason.PLAN_REQUIRED, required_plan=Plan.LAB_PRO)

    if capability is Capability.SHARE and principal.age_band not in SHARE_ALLOWED_AGE_BANDS:
        return _deny(DenialReason.AGE_RESTRICTED)

    rule = quota_rule_for(limits, capability)
    if rule is None:
        return _allow(remaining=None, limit=None)
    if rule.unlimited:
        return _allow(remaining=None, limit=UNLIMITED, quota_kind=capability)
    return QuotaCheck(capability=capability, limit=rule.limit, rule=rule)


def _anonymous_policy(
    capability: Capability,
    *,
    required_plan: Plan | None,
    anonymous_limit: int,
) -> AccessDecision | QuotaCheck:
    # Anonymous visitors have no plan and only the lifetime search allowance.
    if required_plan is not None:
        return _deny(DenialReason.AUTHENTICATION_REQUIRED)
    if capability is Capability.SEARCH:
        return QuotaCheck(capability=capability, limit=anonymous_limit, rule=None, anonymous=True)
    if capability in (Capability.AI_CREATION, Capability.MANUAL_CREATION, Capability.SHARE):
        return _deny(DenialReason.AUTHENTICATION_REQUIRED)
    return _allow(remaining=None, limit=None)


def apply_quota(check: QuotaCheck, usage: int | None | object) -> AccessDecision:
    # A missing or failed lookup fails closed for finite limits.
    if usage is None or usage is USAGE_UNAVAILABLE:
        return _deny(
            DenialReason.QUOTA_EXCEEDED,
            remaining=0,
            limit=check.limit,
            quota_kind=check.capability,
        )
    used = int(usage)
    if used >= check.limit:
        return _deny(
            DenialReason.QUOTA_EXCEEDED,
            remaining=0,
            limit=check.limit,
            quota_kind=check.capability,
        )
    return _allow(remaining=check.limit - used, limit=check.limit, quota_kind=check.capability)


def evaluate(
    principal: Principal | None | object,
    capability: Capability,
    *,
    usage: int | None | object = None,
    limits_table: Mapping[Plan, PlanLimits] | None = None,
    config: AccessConfig = DEFAULT_ACCESS_CONFIG,
    now: datetime | None = None,
    anonymous_limit: int | None = None,
) -> AccessDecision:
    """Decide whether ``principal`` may use ``capability`` right now.

    Pure: the caller supplies the used count for the current period (or
    ``USAGE_UNAVAILABLE`` when the lookup failed). Rules apply in order and
    the first match wins: loading, authentication, admin bypass, admin
    requirement, plan requirement, age policy, then quota.
    """
    outcome = resolve_policy(
        principal,
        capability,
        limits_table=limits_table if limits_table is not None else load_plan_limits_table(),
        config=config,
        now=now or utc_now(),
        anonymous_limit=anonymous_limit if anonymous_limit is not None else anonymous_search_limit(),
    )
    if isinstance(outcome, AccessDecision):
        return outcome
    return apply_quota(outcome, usage)


class EntitlementService:
    def __init__(
        self,
        *,
        limits_table: Mapping[Plan, PlanLimits] | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        # Allow limits and time injection for deterministic tests.
        self._limits_table = dict(limits_table) if limits_table is not None else load_plan_limits_table()
        self._time_provider = time_provider or utc_now

    @property
    def limits_table(self) -> Mapping[Plan, PlanLimits]:
        return self._limits_table

    def now(self) -> datetime:
        return self._time_provider()

    def policy(
        self,
        principal: Principal | None | object,
        capability: Capability,
        *,
        config: AccessConfig = DEFAULT_ACCESS_CONFIG,
        now: datetime | None = None,
    ) -> AccessDecision | QuotaCheck:
        return resolve_policy(
            principal,
            capability,
            limits_table=self._limits_table,
            config=config,
            now=now or self.now(),
            anonymous_limit=anonymous_search_limit(),
        )

    async def check(
        self,
        session: AsyncSession,
        principal: Principal | None | object,
        capability: Capability,
        *,
        config: AccessConfig = DEFAULT_ACCESS_CONFIG,
        client_id: str | None = None,
        now: datetime | None = None,
        timeout_s: float | None = None,
    ) -> AccessDecision:
        # Resolve policy first so unlimited and non-metered capabilities never touch the store.
        now = now or self.now()
        outcome = self.policy(principal, capability, config=config, now=now)
        if isinstance(outcome, AccessDecision):
            return outcome
        if outcome.anonymous and client_id is None:
            # Without a client id the anonymous allowance cannot be tracked.
            return _deny(DenialReason.AUTHENTICATION_REQUIRED)
        usage = await self.read_usage_for(
            session, principal, outcome, client_id=client_id, now=now, timeout_s=timeout_s
        )
        return apply_quota(outcome, usage)

    async def read_usage_for(
        self,
        session: AsyncSession,
        principal: Principal | None | object,
        check: QuotaCheck,
        *,
        client_id: str | None,
        now: datetime,
        timeout_s: float | None = None,
    ) -> int | object:
        # Exactly one read; failures become USAGE_UNAVAILABLE and fail closed.
        try:
            if check.anonymous:
                return await read_anonymous_searches(session, client_id, timeout_s=timeout_s)
            return await read_usage(
                session,
                user_id=principal.user_id,
                capability=check.capability,
                rule=check.rule,
                now=now,
                timeout_s=timeout_s,
            )
        except TransientBackendError as exc:
            logger.warning(
                "usage_lookup_failed capability=%s limit=%s policy=fail_closed error=%s",
                check.capability.value,
                check.limit,
                exc,
            )
            return USAGE_UNAVAILABLE


_entitlement_service: EntitlementService | None = None


def get_entitlement_service() -> EntitlementService:
    # Cache the service so the limits table is parsed once per process.
    global _entitlement_service
    if _entitlement_service is None:
        _entitlement_service = EntitlementService()
    return _entitlement_service


def reset_entitlement_service() -> None:
    # Reset cached services for deterministic tests.
    global _entitlement_service
    _entitlement_service = None

