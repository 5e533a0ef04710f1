from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.config import get_settings
from slanglab.core.errors import TransientBackendError
from slanglab.domain.models import UsageCounter
from slanglab.domain.types import Capability, Period, Principal, utc_now
from slanglab.persistence.db import upsert_insert
from slanglab.services.plans import (
    PlanLimits,
    UNLIMITED,
    QuotaRule,
    approaching_limit,
    quota_rule_for,
    remaining_for,
    resolve_plan_limits,
    usage_percent,
)


logger = logging.getLogger(__name__)

_METERED_CAPABILITIES = (
    Capability.SEARCH,
    Capability.AI_CREATION,
    Capability.MANUAL_CREATION,
)

_COUNTER_COLUMNS = {
    Capability.SEARCH: "searches_used",
    Capability.AI_CREATION: "ai_creations_used",
    Capability.MANUAL_CREATION: "manual_creations_used",
}


def counter_column(capability: Capability) -> str:
    column = _COUNTER_COLUMNS.get(capability)
    if column is None:
        raise ValueError(f"Capability {capability.value} is not metered")
    return column


def day_start(now: datetime) -> datetime:
    # Normalize to the UTC day boundary for daily quotas.
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


def week_start(now: datetime) -> datetime:
    # ISO weeks start on Monday (UTC).
    start = day_start(now)
    return start - timedelta(days=start.weekday())


def period_start_for(period: Period, now: datetime) -> datetime:
    if period is Period.DAY:
        return day_start(now)
    if period is Period.WEEK:
        return week_start(now)
    raise ValueError(f"Unknown period: {period}")


def backend_timeout_s() -> float:
    return get_settings().backend_timeout_ms / 1000.0


async def with_backend_timeout(awaitable: Awaitable[Any], *, timeout_s: float | None = None) -> Any:
    # Bound every store round-trip and normalize failures to TransientBackendError.
    timeout = backend_timeout_s() if timeout_s is None else timeout_s
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransientBackendError("Backend call timed out") from exc
    except SQLAlchemyError as exc:
        raise TransientBackendError("Backend call failed") from exc


def _counter_key(user_id: str, period: Period, period_start: datetime) -> Any:
    return and_(
        UsageCounter.user_id == user_id,
        UsageCounter.period_type == period.value,
        UsageCounter.period_start == period_start,
    )


async def read_usage(
    session: AsyncSession,
    *,
    user_id: str,
    capability: Capability,
    rule: QuotaRule,
    now: datetime,
    timeout_s: float | None = None,
) -> int:
    # Exactly one read per check so the decision never sees two different values.
    column = getattr(UsageCounter, counter_column(capability))
    period_start = period_start_for(rule.period, now)
    stmt = select(column).where(_counter_key(user_id, rule.period, period_start))
    result = await with_backend_timeout(session.execute(stmt), timeout_s=timeout_s)
    value = result.scalar_one_or_none()
    return int(value or 0)


async def increment_usage(
    session: AsyncSession,
    *,
    user_id: str,
    capability: Capability,
    period: Period,
    now: datetime,
    amount: int = 1,
    timeout_s: float | None = None,
) -> int:
    # Atomic insert-or-add; concurrent callers never lose an update.
    column_name = counter_column(capability)
    period_start = period_start_for(period, now)
    insert = upsert_insert(session)
    table = UsageCounter.__table__
    stmt = (
        insert(table)
        .values(
            user_id=user_id,
            period_type=period.value,
            period_start=period_start,
            **{column_name: amount},
        )
        .on_conflict_do_update(
            index_elements=["user_id", "period_type", "period_start"],
            set_={column_name: table.c[column_name] + amount, "updated_at": now},
        )
        .returning(table.c[column_name])
    )
    result = await with_backend_timeout(session.execute(stmt), timeout_s=timeout_s)
    return int(result.scalar_one())


async def try_increment_within_limit(
    session: AsyncSession,
    *,
    user_id: str,
    capability: Capability,
    rule: QuotaRule,
    now: datetime,
    timeout_s: float | None = None,
) -> bool:
    # Conditional increment: succeeds only while used < limit at write time.
    column_name = counter_column(capability)
    period_start = period_start_for(rule.period, now)
    insert = upsert_insert(session)
    table = UsageCounter.__table__
    seed = (
        insert(table)
        .values(user_id=user_id, period_type=rule.period.value, period_start=period_start)
        .on_conflict_do_nothing(index_elements=["user_id", "period_type", "period_start"])
    )
    await with_backend_timeout(session.execute(seed), timeout_s=timeout_s)
    column = table.c[column_name]
    stmt = (
        update(table)
        .where(
            table.c.user_id == user_id,
            table.c.period_type == rule.period.value,
            table.c.period_start == period_start,
            column < rule.limit,
        )
        .values({column_name: column + 1, "updated_at": now})
    )
    result = await with_backend_timeout(session.execute(stmt), timeout_s=timeout_s)
    return result.rowcount == 1


@dataclass(frozen=True)
class CapabilityUsage:
    capability: Capability
    used: int
    limit: int
    # day, week, or lifetime for the anonymous allowance
    period: str
    remaining: int | None
    percent: float | None
    approaching_limit: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability": self.capability.value,
            "used": self.used,
            "limit": self.limit,
            "period": self.period,
            "remaining": "unlimited" if self.remaining is None else self.remaining,
            "percent": self.percent,
            "approaching_limit": self.approaching_limit,
        }


@dataclass(frozen=True)
class UsageStats:
    plan: str
    is_admin: bool
    capabilities: list[CapabilityUsage]

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "is_admin": self.is_admin,
            "capabilities": [item.to_dict() for item in self.capabilities],
        }


def _capability_usage(capability: Capability, used: int, limit: int, period: str) -> CapabilityUsage:
    return CapabilityUsage(
        capability=capability,
        used=used,
        limit=limit,
        period=period,
        remaining=remaining_for(limit, used),
        percent=usage_percent(used, limit),
        approaching_limit=approaching_limit(used, limit),
    )


async def usage_stats(
    session: AsyncSession,
    principal: Principal,
    *,
    limits_table: dict,
    now: datetime | None = None,
) -> UsageStats:
    # Summarize per-capability usage for UI banners; admins report unlimited everywhere.
    now = now or utc_now()
    plan = principal.effective_plan(now)
    limits: PlanLimits = resolve_plan_limits(limits_table, plan)

    items: list[CapabilityUsage] = []
    for capability in _METERED_CAPABILITIES:
        rule = quota_rule_for(limits, capability)
        if rule is None:
            continue
        used = await read_usage(
            session, user_id=principal.user_id, capability=capability, rule=rule, now=now
        )
        limit = UNLIMITED if principal.is_admin else rule.limit
        items.append(_capability_usage(capability, used, limit, rule.period.value))

    display_plan = "Admin" if principal.is_admin else plan.value
    return UsageStats(plan=display_plan, is_admin=principal.is_admin, capabilities=items)


def anonymous_usage_stats(used: int, limit: int) -> UsageStats:
    # Anonymous visitors get a lifetime search allowance and no creations.
    items = [_capability_usage(Capability.SEARCH, used, limit, "lifetime")]
    for capability in (Capability.AI_CREATION, Capability.MANUAL_CREATION):
        items.append(_capability_usage(capability, 0, 0, "lifetime"))
    return UsageStats(plan="Anonymous", is_admin=False, capabilities=items)


async def prune_usage_counters(
    session: AsyncSession,
    *,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> int:
    # Drop closed periods beyond the retention window; open periods are never touched.
    days = retention_days if retention_days is not None else get_settings().usage_counter_retention_days
    cutoff = (now or utc_now()) - timedelta(days=days)
    result = await session.execute(delete(UsageCounter).where(UsageCounter.period_start < cutoff))
    return int(result.rowcount or 0)


async def run_in_transaction(
    session: AsyncSession,
    func: Callable[[AsyncSession], Awaitable[Any]],
) -> Any:
    # Use a nested transaction when prior reads have already opened one.
    in_transaction = session.in_transaction()
    tx_context = session.begin_nested() if in_transaction else session.begin()
    async with tx_context:
        value = await func(session)
    if in_transaction:
        await session.commit()
    return value
