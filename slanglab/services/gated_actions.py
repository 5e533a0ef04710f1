from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.errors import QuotaRaceLostError
from slanglab.domain.types import (
    AccessDecision,
    Capability,
    DecisionStatus,
    DenialReason,
    Principal,
)
from slanglab.services.anonymous_quota import anonymous_search_limit, try_consume_anonymous_search
from slanglab.services.entitlements import (
    DEFAULT_ACCESS_CONFIG,
    AccessConfig,
    EntitlementService,
    get_entitlement_service,
)
from slanglab.services.plans import quota_rule_for, resolve_plan_limits
from slanglab.services.telemetry import record_gated_action
from slanglab.services.usage import increment_usage, run_in_transaction, try_increment_within_limit


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatedActionResult:
    # executed is False for denials and for actions rolled back after a lost race.
    decision: AccessDecision
    value: Any = None
    executed: bool = False


async def _meter(
    session: AsyncSession,
    service: EntitlementService,
    principal: Principal | None,
    capability: Capability,
    *,
    client_id: str | None,
    now: datetime,
) -> None:
    # Admins are never metered; everyone else is counted inside the action's transaction.
    if principal is None:
        if capability is not Capability.SEARCH or client_id is None:
            return
        consumed = await try_consume_anonymous_search(
            session, client_id, limit=anonymous_search_limit(), now=now
        )
        if not consumed:
            raise QuotaRaceLostError("Anonymous search allowance already used")
        return
    if principal.is_admin:
        return
    limits = resolve_plan_limits(service.limits_table, principal.effective_plan(now))
    rule = quota_rule_for(limits, capability)
    if rule is None:
        return
    if rule.unlimited:
        # Unlimited plans still record usage for telemetry.
        await increment_usage(
            session, user_id=principal.user_id, capability=capability, period=rule.period, now=now
        )
        return
    incremented = await try_increment_within_limit(
        session, user_id=principal.user_id, capability=capability, rule=rule, now=now
    )
    if not incremented:
        raise QuotaRaceLostError(f"{capability.value} limit reached by a concurrent action")


async def run_gated_action(
    session: AsyncSession,
    principal: Principal | None | object,
    capability: Capability,
    action: Callable[[AsyncSession], Awaitable[Any]],
    *,
    config: AccessConfig = DEFAULT_ACCESS_CONFIG,
    client_id: str | None = None,
    service: EntitlementService | None = None,
    now: datetime | None = None,
) -> GatedActionResult:
    """Check access, run ``action`` and record usage as one unit of work.

    The usage increment commits together with the action's writes. When a
    concurrent action spends the last unit first, the conditional increment
    fails, the transaction rolls back and a ``quota_exceeded`` decision is
    returned. A cancelled request never commits, so it never counts.
    """
    service = service or get_entitlement_service()
    now = now or service.now()
    decision = await service.check(
        session, principal, capability, config=config, client_id=client_id, now=now
    )
    if not decision.allowed:
        outcome = "pending" if decision.pending else f"denied:{decision.reason.value}"
        record_gated_action(capability.value, outcome)
        return GatedActionResult(decision=decision)

    if session.in_transaction():
        # Close the read-only check so the action gets a fresh transaction.
        await session.commit()
    metered_principal = principal if isinstance(principal, Principal) else None

    async def _unit_of_work(tx: AsyncSession) -> Any:
        value = await action(tx)
        await _meter(tx, service, metered_principal, capability, client_id=client_id, now=now)
        return value

    try:
        value = await run_in_transaction(session, _unit_of_work)
    except QuotaRaceLostError as exc:
        logger.info(
            "gated_action_race_lost capability=%s user_id=%s detail=%s",
            capability.value,
            metered_principal.user_id if metered_principal else None,
            exc,
        )
        record_gated_action(capability.value, "race_lost")
        return GatedActionResult(
            decision=AccessDecision(
                status=DecisionStatus.DENIED,
                reason=DenialReason.QUOTA_EXCEEDED,
                remaining=0,
                limit=decision.limit,
                quota_kind=capability,
            )
        )
    record_gated_action(capability.value, "executed")
    return GatedActionResult(decision=decision, value=value, executed=True)
