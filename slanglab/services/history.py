"""Per-user lookup history behind ``GET /v1/history``."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.config import get_settings
from slanglab.domain.models import Lookup
from slanglab.domain.types import ensure_utc, utc_now
from slanglab.services.terms import normalize_phrase
from slanglab.services.usage import with_backend_timeout


@dataclass(frozen=True)
class HistoryPage:
    items: list[dict[str, Any]]
    page: int
    limit: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {"items": self.items, "page": self.page, "limit": self.limit, "total": self.total}


def lookup_dict(row: Lookup) -> dict[str, Any]:
    return {
        "id": row.id,
        "phrase": row.phrase,
        "sighting_count": row.sighting_count,
        "created_at": ensure_utc(row.created_at).isoformat() if row.created_at else None,
    }


def record_lookup(
    session: AsyncSession,
    user_id: str,
    phrase: str,
    *,
    sighting_count: int,
    now: datetime | None = None,
) -> Lookup:
    # Added to the caller's transaction so a rolled-back search leaves no history.
    row = Lookup(
        user_id=user_id,
        phrase=phrase,
        normalized_text=normalize_phrase(phrase),
        sighting_count=sighting_count,
        created_at=now or utc_now(),
    )
    session.add(row)
    return row


def clamp_limit(limit: int | None) -> int:
    settings = get_settings()
    if limit is None:
        return settings.history_default_limit
    return max(1, min(limit, settings.history_max_limit))


async def list_lookups(
    session: AsyncSession,
    user_id: str,
    *,
    page: int = 1,
    limit: int | None = None,
    search: str | None = None,
) -> HistoryPage:
    """Newest-first page of a user's lookups.

    ``search`` is a case-insensitive substring match on the looked-up phrase;
    LIKE wildcards in it are matched literally.
    """
    page = max(1, page)
    limit = clamp_limit(limit)
    conditions = [Lookup.user_id == user_id]
    needle = normalize_phrase(search or "")
    if needle:
        conditions.append(Lookup.normalized_text.contains(needle, autoescape=True))

    total = (
        await with_backend_timeout(session.execute(select(func.count()).select_from(Lookup).where(*conditions)))
    ).scalar_one()
    result = await with_backend_timeout(
        session.execute(
            select(Lookup)
            .where(*conditions)
            .order_by(Lookup.created_at.desc(), Lookup.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    )
    items = [lookup_dict(row) for row in result.scalars().all()]
    return HistoryPage(items=items, page=page, limit=limit, total=int(total))
