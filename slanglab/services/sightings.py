from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.core.errors import MalformedInputError
from slanglab.domain.models import Sighting
from slanglab.domain.types import SightingCandidate, ensure_utc, utc_now
from slanglab.persistence.db import upsert_insert
from slanglab.services.usage import with_backend_timeout


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedSightings:
    accepted: list[SightingCandidate] = field(default_factory=list)
    rejected: int = 0


def parse_sighting(raw: Mapping[str, Any]) -> SightingCandidate:
    try:
        return SightingCandidate.model_validate(raw)
    except ValidationError as exc:
        raise MalformedInputError(f"Invalid sighting: {exc.error_count()} field error(s)") from exc


def parse_sightings(raw_items: Iterable[Any]) -> ParsedSightings:
    # Reject malformed items one by one; the rest of the batch still counts.
    accepted: list[SightingCandidate] = []
    rejected = 0
    for index, raw in enumerate(raw_items):
        if isinstance(raw, SightingCandidate):
            accepted.append(raw)
            continue
        if not isinstance(raw, Mapping):
            rejected += 1
            logger.warning("sighting_rejected index=%s reason=not_an_object", index)
            continue
        try:
            accepted.append(parse_sighting(raw))
        except MalformedInputError as exc:
            rejected += 1
            logger.warning("sighting_rejected index=%s url=%s reason=%s", index, raw.get("url"), exc)
    return ParsedSightings(accepted=accepted, rejected=rejected)


async def store_sightings(
    session: AsyncSession,
    term_id: int,
    sightings: Iterable[SightingCandidate],
    *,
    now: datetime | None = None,
) -> int:
    # Upsert per (term_id, url) so re-crawls refresh the row instead of duplicating it.
    now = now or utc_now()
    insert = upsert_insert(session)
    table = Sighting.__table__
    stored = 0
    for sighting in sightings:
        stmt = insert(table).values(
            term_id=term_id,
            source=sighting.source,
            url=sighting.url,
            title=sighting.title,
            snippet=sighting.snippet,
            score=sighting.score,
            observed_at=sighting.observed_at,
            first_seen_at=now,
            last_seen_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["term_id", "url"],
            set_={
                "source": stmt.excluded.source,
                "title": stmt.excluded.title,
                "snippet": stmt.excluded.snippet,
                "score": stmt.excluded.score,
                "observed_at": stmt.excluded.observed_at,
                "last_seen_at": now,
            },
        )
        await with_backend_timeout(session.execute(stmt))
        stored += 1
    return stored


async def load_sightings(
    session: AsyncSession,
    term_id: int,
    *,
    since: datetime | None = None,
) -> list[SightingCandidate]:
    stmt = select(Sighting).where(Sighting.term_id == term_id)
    if since is not None:
        stmt = stmt.where(Sighting.observed_at >= since)
    result = await with_backend_timeout(session.execute(stmt.order_by(Sighting.observed_at)))
    return [
        SightingCandidate(
            source=row.source,
            url=row.url,
            title=row.title,
            snippet=row.snippet,
            score=row.score,
            observed_at=ensure_utc(row.observed_at),
        )
        for row in result.scalars().all()
    ]
