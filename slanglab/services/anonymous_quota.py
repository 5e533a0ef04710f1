"""Search allowance for visitors without an account.

Anonymous visitors are metered by the identifier their browser keeps in local
storage. The count has no reset period and is only as durable as that local
storage: clearing it, or switching devices, starts a fresh allowance. There is
no cross-device consistency and none is attempted.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.config import get_settings
from slanglab.domain.models import AnonymousSearch
from slanglab.persistence.db import upsert_insert
from slanglab.services.usage import with_backend_timeout


_MAX_CLIENT_ID_LENGTH = 128


def normalize_client_id(value: str | None) -> str | None:
    # Treat blank or oversized identifiers as absent.
    if value is None:
        return None
    client_id = value.strip()
    if not client_id or len(client_id) > _MAX_CLIENT_ID_LENGTH:
        return None
    return client_id


def anonymous_search_limit() -> int:
    return get_settings().anonymous_search_limit


async def read_anonymous_searches(
    session: AsyncSession,
    client_id: str,
    *,
    timeout_s: float | None = None,
) -> int:
    stmt = select(AnonymousSearch.search_count).where(AnonymousSearch.client_id == client_id)
    result = await with_backend_timeout(session.execute(stmt), timeout_s=timeout_s)
    return int(result.scalar_one_or_none() or 0)


async def try_consume_anonymous_search(
    session: AsyncSession,
    client_id: str,
    *,
    limit: int,
    now: datetime,
    timeout_s: float | None = None,
) -> bool:
    # Conditional increment so two tabs cannot both spend the last search.
    insert = upsert_insert(session)
    table = AnonymousSearch.__table__
    seed = (
        insert(table)
        .values(client_id=client_id, search_count=0, first_search_at=now, last_search_at=now)
        .on_conflict_do_nothing(index_elements=["client_id"])
    )
    await with_backend_timeout(session.execute(seed), timeout_s=timeout_s)
    stmt = (
        table.update()
        .where(table.c.client_id == client_id, table.c.search_count < limit)
        .values(search_count=table.c.search_count + 1, last_search_at=now)
    )
    result = await with_backend_timeout(session.execute(stmt), timeout_s=timeout_s)
    return result.rowcount == 1
