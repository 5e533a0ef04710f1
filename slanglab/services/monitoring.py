from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Iterable, Sequence
from urllib.parse import urlparse

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slanglab.core.config import get_settings
from slanglab.domain.models import MonitoringRecord, Profile, Term
from slanglab.domain.types import (
    AccessDecision,
    BatchOutcome,
    Capability,
    MonitoringState,
    MonitoringStatus,
    Platform,
    SightingCandidate,
    ensure_utc,
    utc_now,
)
from slanglab.persistence.db import SessionLocal, supports_skip_locked, upsert_insert
from slanglab.providers.evidence.base import EvidenceProvider
from slanglab.providers.evidence.factory import get_evidence_provider
from slanglab.providers.notifier.base import CreatorNotifier, FirstSightingNotice
from slanglab.providers.notifier.factory import get_creator_notifier
from slanglab.services.entitlements import EntitlementService, get_entitlement_service
from slanglab.services.principals import principal_from_profile
from slanglab.services.sightings import parse_sightings, store_sightings
from slanglab.services.sources import current_min_score
from slanglab.services.telemetry import increment_counter
from slanglab.services.terms import get_term
from slanglab.services.usage import with_backend_timeout


logger = logging.getLogger(__name__)

_PLATFORM_HOSTS = {
    "tiktok.com": Platform.TIKTOK,
    "twitter.com": Platform.TWITTER,
    "x.com": Platform.TWITTER,
    "instagram.com": Platform.INSTAGRAM,
    "reddit.com": Platform.REDDIT,
    "youtube.com": Platform.YOUTUBE,
    "youtu.be": Platform.YOUTUBE,
}
_HOST_PREFIXES = ("www.", "m.", "mobile.", "old.")

# Markers of a dictionary context rather than usage in the wild.
_DEFINITION_MARKERS = ("definition", "meaning")


def detect_platform(url: str) -> Platform:
    # Exact host match after dropping one common subdomain label.
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return Platform.WEB
    for prefix in _HOST_PREFIXES:
        if host.startswith(prefix):
            host = host[len(prefix):]
            break
    return _PLATFORM_HOSTS.get(host, Platform.WEB)


def is_organic_mention(phrase: str, snippet: str) -> bool:
    text = snippet.lower()
    if phrase.lower() not in text:
        return False
    return not any(marker in text for marker in _DEFINITION_MARKERS)


def merge_platforms(existing: Iterable[Platform], found: Iterable[Platform]) -> tuple[Platform, ...]:
    # Append-only, insertion-ordered set.
    merged = list(existing)
    for platform in found:
        if platform not in merged:
            merged.append(platform)
    return tuple(merged)


def _dormant_reference(prior: MonitoringState) -> datetime | None:
    reference = prior.last_found_at or prior.monitoring_started_at
    return ensure_utc(reference) if reference else None


def next_status(
    prior: MonitoringState,
    *,
    found_count: int,
    trending_score: int,
    now: datetime,
    trending_threshold: int,
    dormant_after: timedelta,
) -> MonitoringStatus:
    if trending_score > trending_threshold:
        return MonitoringStatus.TRENDING
    status = prior.status
    if status is MonitoringStatus.TRENDING:
        # No demotion path out of trending.
        return MonitoringStatus.TRENDING
    if status is MonitoringStatus.MONITORING:
        return MonitoringStatus.SPOTTED if found_count > 0 else MonitoringStatus.MONITORING
    if status is MonitoringStatus.SPOTTED:
        if found_count > 0:
            return MonitoringStatus.SPOTTED
        reference = _dormant_reference(prior)
        if reference is not None and now - reference > dormant_after:
            return MonitoringStatus.DORMANT
        return MonitoringStatus.SPOTTED
    if status is MonitoringStatus.DORMANT:
        return MonitoringStatus.DORMANT
    raise ValueError(f"Unhandled monitoring status: {status!r}")


def record_sighting_batch(
    phrase: str,
    sightings: Sequence[SightingCandidate],
    prior: MonitoringState,
    *,
    min_score: int,
    now: datetime | None = None,
    mention_weight: int | None = None,
    trending_threshold: int | None = None,
    dormant_after_days: int | None = None,
) -> BatchOutcome:
    """Fold one batch of sightings into a term's monitoring state.

    Pure: the prior state is never mutated. Sightings below ``min_score`` are
    dropped before anything is counted. Each accepted sighting contributes its
    platform; only organic mentions (phrase present, no definition markers)
    count as finds and move the trending score.
    """
    settings = get_settings()
    now = now or utc_now()
    weight = mention_weight if mention_weight is not None else settings.mention_weight
    threshold = trending_threshold if trending_threshold is not None else settings.trending_threshold
    dormant_days = (
        dormant_after_days if dormant_after_days is not None else settings.monitoring_dormant_after_days
    )

    accepted = [sighting for sighting in sightings if sighting.score >= min_score]
    found_count = sum(1 for sighting in accepted if is_organic_mention(phrase, sighting.snippet))
    platforms = merge_platforms(prior.platforms, (detect_platform(s.url) for s in accepted))
    trending_score = prior.trending_score + found_count * weight

    status = next_status(
        prior,
        found_count=found_count,
        trending_score=trending_score,
        now=now,
        trending_threshold=threshold,
        dormant_after=timedelta(days=dormant_days),
    )
    state = MonitoringState(
        status=status,
        trending_score=trending_score,
        times_found=prior.times_found + found_count,
        platforms=platforms,
        monitoring_started_at=prior.monitoring_started_at,
        last_checked_at=now,
        last_found_at=now if found_count > 0 else prior.last_found_at,
    )
    return BatchOutcome(
        state=state,
        found_count=found_count,
        accepted=len(accepted),
        rejected_below_threshold=len(sightings) - len(accepted),
    )


def state_from_record(record: MonitoringRecord) -> MonitoringState:
    platforms: list[Platform] = []
    for name in record.platforms_detected or []:
        try:
            platforms.append(Platform(name))
        except ValueError:
            platforms.append(Platform.WEB)
    return MonitoringState(
        status=MonitoringStatus(record.status),
        trending_score=int(record.trending_score or 0),
        times_found=int(record.times_found or 0),
        platforms=merge_platforms((), platforms),
        monitoring_started_at=ensure_utc(record.monitoring_started_at) if record.monitoring_started_at else None,
        last_checked_at=ensure_utc(record.last_checked_at) if record.last_checked_at else None,
        last_found_at=ensure_utc(record.last_found_at) if record.last_found_at else None,
    )


def apply_state(record: MonitoringRecord, state: MonitoringState) -> None:
    record.status = state.status.value
    record.trending_score = state.trending_score
    record.times_found = state.times_found
    record.platforms_detected = [platform.value for platform in state.platforms]
    record.last_checked_at = state.last_checked_at
    record.last_found_at = state.last_found_at


def monitoring_record_dict(record: MonitoringRecord, term: Term | None = None) -> dict[str, Any]:
    state = state_from_record(record)
    return {
        "id": record.id,
        "term_id": record.term_id,
        "phrase": term.text if term is not None else None,
        "slug": term.slug if term is not None else None,
        "status": state.status.value,
        "trending_score": state.trending_score,
        "times_found": state.times_found,
        "platforms_detected": [platform.value for platform in state.platforms],
        "monitoring_started_at": state.monitoring_started_at.isoformat() if state.monitoring_started_at else None,
        "last_checked_at": state.last_checked_at.isoformat() if state.last_checked_at else None,
        "last_found_at": state.last_found_at.isoformat() if state.last_found_at else None,
    }


async def upsert_monitoring_record(
    session: AsyncSession,
    *,
    term_id: int,
    owner_id: str,
    now: datetime | None = None,
) -> MonitoringRecord:
    # Idempotent on (term_id, owner_id); a repeat request returns the existing record.
    now = now or utc_now()
    insert = upsert_insert(session)
    stmt = (
        insert(MonitoringRecord.__table__)
        .values(
            term_id=term_id,
            owner_id=owner_id,
            status=MonitoringStatus.MONITORING.value,
            trending_score=0,
            times_found=0,
            platforms_detected=[],
            monitoring_started_at=now,
        )
        .on_conflict_do_nothing(index_elements=["term_id", "owner_id"])
    )
    await with_backend_timeout(session.execute(stmt))
    result = await with_backend_timeout(
        session.execute(
            select(MonitoringRecord).where(
                MonitoringRecord.term_id == term_id,
                MonitoringRecord.owner_id == owner_id,
            )
        )
    )
    return result.scalar_one()


@dataclass(frozen=True)
class TermPassOutcome:
    record_id: int
    term_id: int | None = None
    phrase: str | None = None
    status: str | None = None
    found_count: int = 0
    platforms: tuple[str, ...] = ()
    skipped_reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "term_id": self.term_id,
            "phrase": self.phrase,
            "status": self.status,
            "found_count": self.found_count,
            "platforms": list(self.platforms),
            "skipped_reason": self.skipped_reason,
            "error": self.error,
        }


@dataclass(frozen=True)
class MonitoringPassResult:
    checked: int
    skipped: int
    failed: int
    results: list[TermPassOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [item.to_dict() for item in self.results],
        }


_term_locks: dict[int, asyncio.Lock] = {}


def _term_lock(term_id: int) -> asyncio.Lock:
    lock = _term_locks.get(term_id)
    if lock is None:
        lock = asyncio.Lock()
        _term_locks[term_id] = lock
    return lock


def _release_term_lock(term_id: int, lock: asyncio.Lock) -> None:
    # Busy terms are skipped rather than awaited, so an unheld lock has no waiters.
    if not lock.locked() and _term_locks.get(term_id) is lock:
        del _term_locks[term_id]


def reset_term_locks() -> None:
    # Clear per-term locks for deterministic tests.
    _term_locks.clear()


def evidence_timeout_s() -> float:
    # Upper bound for one provider call including its own retries.
    settings = get_settings()
    return settings.ext_call_timeout_ms / 1000.0 * max(settings.ext_retry_max_attempts, 1) + 1.0


def _due_cutoff(now: datetime, interval_hours: int) -> datetime:
    return now - timedelta(hours=interval_hours)


def _is_due(record: MonitoringRecord, cutoff: datetime) -> bool:
    return record.last_checked_at is None or ensure_utc(record.last_checked_at) <= cutoff


async def select_due_records(
    session: AsyncSession,
    *,
    now: datetime,
    service: EntitlementService,
    limit: int | None = None,
    interval_hours: int | None = None,
) -> tuple[list[tuple[int, int]], list[TermPassOutcome]]:
    # Due records whose owner may still track; returns (record_id, term_id) pairs and skips.
    settings = get_settings()
    cutoff = _due_cutoff(now, interval_hours or settings.monitoring_interval_hours)
    stmt = (
        select(MonitoringRecord, Profile)
        .join(Profile, Profile.user_id == MonitoringRecord.owner_id, isouter=True)
        .where(or_(MonitoringRecord.last_checked_at.is_(None), MonitoringRecord.last_checked_at <= cutoff))
        .order_by(MonitoringRecord.last_checked_at.is_not(None), MonitoringRecord.last_checked_at, MonitoringRecord.id)
        .limit(limit or settings.monitoring_batch_size)
    )
    result = await session.execute(stmt)
    due: list[tuple[int, int]] = []
    skipped: list[TermPassOutcome] = []
    for record, profile in result.all():
        principal = principal_from_profile(profile, user_id=record.owner_id)
        decision = service.policy(principal, Capability.TRACKING, now=now)
        if isinstance(decision, AccessDecision) and decision.allowed:
            due.append((record.id, record.term_id))
        else:
            skipped.append(
                TermPassOutcome(record_id=record.id, term_id=record.term_id, skipped_reason="not_entitled")
            )
    return due, skipped


async def _load_requested_records(session: AsyncSession, record_ids: Sequence[int]) -> list[tuple[int, int]]:
    result = await session.execute(
        select(MonitoringRecord.id, MonitoringRecord.term_id)
        .where(MonitoringRecord.id.in_(list(record_ids)))
        .order_by(MonitoringRecord.id)
    )
    return [(row[0], row[1]) for row in result.all()]


def first_sighting_notice(
    owner_id: str,
    term_id: int,
    phrase: str,
    sightings: Sequence[SightingCandidate],
    *,
    min_score: int,
) -> FirstSightingNotice:
    # Only the organic, above-threshold sightings that counted as finds.
    qualifying = tuple(
        {"url": s.url, "source": s.source, "snippet": s.snippet, "score": s.score}
        for s in sightings
        if s.score >= min_score and is_organic_mention(phrase, s.snippet)
    )
    return FirstSightingNotice(owner_id=owner_id, term_id=term_id, phrase=phrase, sightings=qualifying)


async def _notify_first_sighting(notifier: CreatorNotifier, notice: FirstSightingNotice) -> None:
    try:
        await notifier.notify_first_sighting(notice)
    except Exception as exc:  # noqa: BLE001 - the status change is already committed
        increment_counter("creator_notification_failures_total")
        logger.warning(
            "creator_notification_failed owner_id=%s term_id=%s error=%s",
            notice.owner_id,
            notice.term_id,
            exc,
            exc_info=exc,
        )
        return
    increment_counter("creator_notifications_total")
    logger.info(
        "creator_notified owner_id=%s term_id=%s sightings=%s",
        notice.owner_id,
        notice.term_id,
        len(notice.sightings),
    )


async def _check_term(
    session: AsyncSession,
    record_id: int,
    *,
    provider: EvidenceProvider,
    min_score: int,
    now: datetime,
    cutoff: datetime,
    force: bool,
    notifier: CreatorNotifier | None = None,
) -> TermPassOutcome:
    stmt = select(MonitoringRecord).where(MonitoringRecord.id == record_id)
    if supports_skip_locked(session):
        # Another worker holding the row is already checking this term.
        stmt = stmt.with_for_update(skip_locked=True)
    async with session.begin():
        record = (await session.execute(stmt)).scalar_one_or_none()
        if record is None:
            logger.info("monitoring_term_skipped_locked record_id=%s", record_id)
            return TermPassOutcome(record_id=record_id, skipped_reason="locked")
        if not force and not _is_due(record, cutoff):
            return TermPassOutcome(record_id=record_id, term_id=record.term_id, skipped_reason="not_due")
        term = await get_term(session, record.term_id)
        if term is None:
            return TermPassOutcome(record_id=record_id, term_id=record.term_id, skipped_reason="term_missing")

        raw = await asyncio.wait_for(provider.search(term.text), timeout=evidence_timeout_s())
        parsed = parse_sightings(raw)
        await store_sightings(session, term.id, parsed.accepted, now=now)
        prior = state_from_record(record)
        outcome = record_sighting_batch(
            term.text,
            parsed.accepted,
            prior,
            min_score=min_score,
            now=now,
        )
        apply_state(record, outcome.state)
        owner_id = record.owner_id

    if notifier is not None and outcome.found_count > 0 and prior.status is MonitoringStatus.MONITORING:
        notice = first_sighting_notice(owner_id, term.id, term.text, parsed.accepted, min_score=min_score)
        await _notify_first_sighting(notifier, notice)

    return TermPassOutcome(
        record_id=record_id,
        term_id=term.id,
        phrase=term.text,
        status=outcome.state.status.value,
        found_count=outcome.found_count,
        platforms=tuple(platform.value for platform in outcome.state.platforms),
    )


async def run_monitoring_pass(
    record_ids: Sequence[int] | None = None,
    *,
    provider: EvidenceProvider | None = None,
    session_factory: async_sessionmaker | None = None,
    service: EntitlementService | None = None,
    min_score: int | None = None,
    now: datetime | None = None,
    force: bool = False,
    notifier: CreatorNotifier | None = None,
) -> MonitoringPassResult:
    """Check a batch of tracked terms once; the scheduler's single entry point.

    With ``record_ids`` omitted, the batch is every record not checked within
    ``monitoring_interval_hours`` whose owner is still entitled to tracking.
    Each term is serialized by an in-process lock plus, on PostgreSQL, a
    skip-locked row lock, and is re-checked for being due under that lock so
    overlapping passes update a term at most once per interval. One term's
    failure is logged and reported without aborting the rest of the batch.
    Terms leaving ``monitoring`` with organic finds trigger one first-sighting
    notice to their owner; a notifier failure never fails the term.
    """
    settings = get_settings()
    provider = provider or get_evidence_provider()
    notifier = notifier or get_creator_notifier()
    session_factory = session_factory or SessionLocal
    service = service or get_entitlement_service()
    now = now or utc_now()
    cutoff = _due_cutoff(now, settings.monitoring_interval_hours)
    if min_score is None:
        min_score = await current_min_score()

    async with session_factory() as session:
        if record_ids is None:
            targets, results = await select_due_records(session, now=now, service=service)
        else:
            targets, results = await _load_requested_records(session, record_ids), []
            missing = set(record_ids) - {record_id for record_id, _ in targets}
            results.extend(TermPassOutcome(record_id=rid, skipped_reason="not_found") for rid in sorted(missing))

    checked = failed = 0
    for record_id, term_id in targets:
        lock = _term_lock(term_id)
        if lock.locked():
            logger.info("monitoring_term_skipped_locked record_id=%s term_id=%s", record_id, term_id)
            results.append(TermPassOutcome(record_id=record_id, term_id=term_id, skipped_reason="in_progress"))
            continue
        try:
            async with lock:
                async with session_factory() as session:
                    outcome = await _check_term(
                        session,
                        record_id,
                        provider=provider,
                        min_score=min_score,
                        now=now,
                        cutoff=cutoff,
                        force=force,
                        notifier=notifier,
                    )
        except Exception as exc:  # noqa: BLE001 - one term must not abort the pass
            failed += 1
            increment_counter("monitoring_term_failures_total")
            logger.warning(
                "monitoring_term_failed record_id=%s term_id=%s error=%s",
                record_id,
                term_id,
                exc,
                exc_info=exc,
            )
            results.append(TermPassOutcome(record_id=record_id, term_id=term_id, error=str(exc) or type(exc).__name__))
            continue
        finally:
            _release_term_lock(term_id, lock)
        if outcome.skipped_reason is None:
            checked += 1
        results.append(outcome)

    skipped = sum(1 for item in results if item.skipped_reason is not None)
    increment_counter("monitoring_passes_total")
    logger.info(
        "monitoring_pass_completed checked=%s skipped=%s failed=%s min_score=%s",
        checked,
        skipped,
        failed,
        min_score,
    )
    return MonitoringPassResult(checked=checked, skipped=skipped, failed=failed, results=results)
