from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from slanglab.domain.models import UsageCounter
from slanglab.domain.types import Capability, Period, Plan, Principal, Role
from slanglab.persistence.db import SessionLocal
from slanglab.services.anonymous_quota import try_consume_anonymous_search
from slanglab.services.plans import DEFAULT_PLAN_LIMITS, QuotaRule
from slanglab.services.usage import (
    increment_usage,
    period_start_for,
    prune_usage_counters,
    read_usage,
    try_increment_within_limit,
    usage_stats,
)


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
DAILY = QuotaRule(limit=3, period=Period.DAY)


async def _increment_once(user_id: str) -> int:
    async with SessionLocal() as session:
        value = await increment_usage(
            session, user_id=user_id, capability=Capability.SEARCH, period=Period.DAY, now=NOW
        )
        await session.commit()
        return value


async def test_concurrent_increments_lose_no_updates() -> None:
    await asyncio.gather(*(_increment_once("u-concurrent") for _ in range(8)))
    async with SessionLocal() as session:
        used = await read_usage(session, user_id="u-concurrent", capability=Capability.SEARCH, rule=DAILY, now=NOW)
    assert used == 8


async def test_conditional_increment_stops_at_limit() -> None:
    rule = QuotaRule(limit=2, period=Period.WEEK)
    outcomes = []
    for _ in range(4):
        async with SessionLocal() as session:
            outcomes.append(
                await try_increment_within_limit(
                    session, user_id="u-limit", capability=Capability.MANUAL_CREATION, rule=rule, now=NOW
                )
            )
            await session.commit()
    assert outcomes == [True, True, False, False]
    async with SessionLocal() as session:
        used = await read_usage(
            session, user_id="u-limit", capability=Capability.MANUAL_CREATION, rule=rule, now=NOW
        )
    assert used == 2


async def test_new_period_starts_from_zero_without_reset() -> None:
    async with SessionLocal() as session:
        for _ in range(3):
            await increment_usage(session, user_id="u-roll", capability=Capability.SEARCH, period=Period.DAY, now=NOW)
        await session.commit()
        tomorrow = NOW + timedelta(days=1)
        assert await read_usage(session, user_id="u-roll", capability=Capability.SEARCH, rule=DAILY, now=NOW) == 3
        assert await read_usage(session, user_id="u-roll", capability=Capability.SEARCH, rule=DAILY, now=tomorrow) == 0
        rows = (await session.execute(select(func.count()).select_from(UsageCounter))).scalar_one()
    # Reading a new period creates no row.
    assert rows == 1


def test_period_boundaries_are_utc_day_and_iso_week() -> None:
    late_sunday = datetime(2024, 5, 19, 23, 59, tzinfo=timezone.utc)
    assert period_start_for(Period.DAY, late_sunday) == datetime(2024, 5, 19, tzinfo=timezone.utc)
    assert period_start_for(Period.WEEK, late_sunday) == datetime(2024, 5, 13, tzinfo=timezone.utc)


async def test_prune_drops_only_old_periods() -> None:
    async with SessionLocal() as session:
        await increment_usage(session, user_id="u-prune", capability=Capability.SEARCH, period=Period.DAY, now=NOW)
        await increment_usage(
            session,
            user_id="u-prune",
            capability=Capability.SEARCH,
            period=Period.DAY,
            now=NOW - timedelta(days=200),
        )
        await session.commit()
        deleted = await prune_usage_counters(session, retention_days=120, now=NOW)
        await session.commit()
        remaining = (await session.execute(select(func.count()).select_from(UsageCounter))).scalar_one()
    assert deleted == 1
    assert remaining == 1


async def test_usage_stats_report_unlimited_and_finite_limits() -> None:
    principal = Principal(user_id="u-stats", plan=Plan.SEARCH_PRO)
    async with SessionLocal() as session:
        for _ in range(2):
            await increment_usage(session, user_id="u-stats", capability=Capability.SEARCH, period=Period.DAY, now=NOW)
        await session.commit()
        stats = await usage_stats(session, principal, limits_table=DEFAULT_PLAN_LIMITS, now=NOW)
    by_capability = {item.capability: item for item in stats.capabilities}
    search = by_capability[Capability.SEARCH]
    assert search.used == 2
    assert search.remaining is None
    assert search.to_dict()["remaining"] == "unlimited"
    manual = by_capability[Capability.MANUAL_CREATION]
    assert manual.limit == 3
    assert manual.remaining == 3
    assert stats.plan == "SearchPro"


async def test_admin_usage_stats_are_unlimited() -> None:
    admin = Principal(user_id="u-admin", role=Role.ADMIN, plan=Plan.FREE)
    async with SessionLocal() as session:
        stats = await usage_stats(session, admin, limits_table=DEFAULT_PLAN_LIMITS, now=NOW)
    assert stats.plan == "Admin"
    assert all(item.remaining is None for item in stats.capabilities)


async def test_anonymous_allowance_is_spent_once() -> None:
    async with SessionLocal() as session:
        first = await try_consume_anonymous_search(session, "client-1", limit=1, now=NOW)
        second = await try_consume_anonymous_search(session, "client-1", limit=1, now=NOW)
        other = await try_consume_anonymous_search(session, "client-2", limit=1, now=NOW)
        await session.commit()
    assert (first, second, other) == (True, False, True)
