from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from slanglab.core.errors import TransientBackendError
from slanglab.domain.models import Creation
from slanglab.domain.types import Capability, DenialReason, Period, Plan, Principal, Role
from slanglab.persistence.db import SessionLocal
from slanglab.services import entitlements as entitlements_module
from slanglab.services.entitlements import EntitlementService
from slanglab.services.gated_actions import run_gated_action
from slanglab.services.plans import DEFAULT_PLAN_LIMITS, PlanLimits, QuotaRule
from slanglab.services.telemetry import counter_key, counters_snapshot
from slanglab.services.usage import read_usage


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

ONE_SEARCH_TABLE = {
    **DEFAULT_PLAN_LIMITS,
    Plan.FREE: PlanLimits(
        searches_per_day=1,
        ai_creations_limit=1,
        ai_creations_period=Period.WEEK,
        manual_creations_per_week=1,
        tracking_allowed=False,
        analytics_allowed=False,
    ),
}


def _service(table=ONE_SEARCH_TABLE) -> EntitlementService:
    return EntitlementService(limits_table=table, time_provider=lambda: NOW)


async def _count_creations(user_id: str) -> int:
    async with SessionLocal() as session:
        stmt = select(func.count()).select_from(Creation).where(Creation.user_id == user_id)
        return (await session.execute(stmt)).scalar_one()


async def _used(user_id: str, capability: Capability, period: Period) -> int:
    async with SessionLocal() as session:
        return await read_usage(
            session, user_id=user_id, capability=capability, rule=QuotaRule(limit=1, period=period), now=NOW
        )


def _creation_action(user_id: str):
    async def _create(session) -> int:
        creation = Creation(user_id=user_id, phrase="rizz", meaning="charm", example="he has rizz", creation_type="manual")
        session.add(creation)
        await session.flush()
        return creation.id

    return _create


async def test_concurrent_actions_with_limit_one_execute_once() -> None:
    principal = Principal(user_id="u-race", plan=Plan.FREE)
    service = _service()

    async def _attempt():
        async with SessionLocal() as session:
            return await run_gated_action(
                session, principal, Capability.MANUAL_CREATION, _creation_action("u-race"), service=service
            )

    results = await asyncio.gather(*(_attempt() for _ in range(6)))
    executed = [result for result in results if result.executed]
    assert len(executed) == 1
    for result in results:
        if not result.executed:
            assert result.decision.reason is DenialReason.QUOTA_EXCEEDED
            assert result.decision.remaining == 0

    # Losers rolled back their writes along with the increment.
    assert await _count_creations("u-race") == 1
    assert await _used("u-race", Capability.MANUAL_CREATION, Period.WEEK) == 1
    counters = counters_snapshot()
    executed_key = counter_key("gated_actions_total", {"capability": "manual_creation", "outcome": "executed"})
    assert counters[executed_key] == 1
    assert sum(value for key, value in counters.items() if key.startswith("gated_actions_total")) == 6

    async with SessionLocal() as session:
        decision = await service.check(session, principal, Capability.MANUAL_CREATION)
    assert decision.reason is DenialReason.QUOTA_EXCEEDED


async def test_failed_action_is_not_counted() -> None:
    principal = Principal(user_id="u-fail", plan=Plan.FREE)

    async def _boom(session) -> None:
        session.add(Creation(user_id="u-fail", phrase="x", meaning="y", example="z", creation_type="manual"))
        await session.flush()
        raise RuntimeError("provider exploded")

    async with SessionLocal() as session:
        with pytest.raises(RuntimeError):
            await run_gated_action(session, principal, Capability.MANUAL_CREATION, _boom, service=_service())

    assert await _count_creations("u-fail") == 0
    assert await _used("u-fail", Capability.MANUAL_CREATION, Period.WEEK) == 0


async def test_denied_action_never_runs() -> None:
    calls: list[str] = []

    async def _action(session) -> None:
        calls.append("ran")

    async with SessionLocal() as session:
        result = await run_gated_action(session, None, Capability.AI_CREATION, _action, service=_service())
    assert not result.executed
    assert result.decision.reason is DenialReason.AUTHENTICATION_REQUIRED
    assert calls == []


async def test_unlimited_plan_still_records_usage() -> None:
    principal = Principal(user_id="u-pro", plan=Plan.SEARCH_PRO)

    async def _search(session) -> str:
        return "ok"

    for _ in range(3):
        async with SessionLocal() as session:
            result = await run_gated_action(session, principal, Capability.SEARCH, _search, service=_service())
        assert result.executed
        assert result.decision.remaining is None
    assert await _used("u-pro", Capability.SEARCH, Period.DAY) == 3


async def test_admin_is_not_metered() -> None:
    admin = Principal(user_id="u-admin", role=Role.ADMIN)

    async def _search(session) -> str:
        return "ok"

    for _ in range(3):
        async with SessionLocal() as session:
            result = await run_gated_action(session, admin, Capability.SEARCH, _search, service=_service())
        assert result.executed
    assert await _used("u-admin", Capability.SEARCH, Period.DAY) == 0


async def test_anonymous_search_once_per_client() -> None:
    async def _search(session) -> str:
        return "ok"

    async with SessionLocal() as session:
        first = await run_gated_action(session, None, Capability.SEARCH, _search, client_id="c-1", service=_service())
    async with SessionLocal() as session:
        second = await run_gated_action(session, None, Capability.SEARCH, _search, client_id="c-1", service=_service())
    async with SessionLocal() as session:
        missing = await run_gated_action(session, None, Capability.SEARCH, _search, service=_service())
    assert first.executed
    assert second.decision.reason is DenialReason.QUOTA_EXCEEDED
    assert missing.decision.reason is DenialReason.AUTHENTICATION_REQUIRED


async def test_usage_lookup_failure_fails_closed(monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    async def _broken_read(*args, **kwargs) -> int:
        raise TransientBackendError("timeout")

    monkeypatch.setattr(entitlements_module, "read_usage", _broken_read)
    free_user = Principal(user_id="u-closed", plan=Plan.FREE)
    pro_user = Principal(user_id="u-open", plan=Plan.SEARCH_PRO)
    service = _service()
    async with SessionLocal() as session:
        with caplog.at_level("WARNING"):
            denied = await service.check(session, free_user, Capability.SEARCH)
        allowed = await service.check(session, pro_user, Capability.SEARCH)
    assert denied.reason is DenialReason.QUOTA_EXCEEDED
    assert denied.remaining == 0
    assert "usage_lookup_failed" in caplog.text
    # Unlimited plans never read the counter, so a store outage cannot deny them.
    assert allowed.allowed
