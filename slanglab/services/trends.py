from __future__ import annotations

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from slanglab.core.config import get_settings
from slanglab.domain.types import SightingCandidate, SparklinePoint, TrendSummary, ensure_utc, utc_now
from slanglab.services.monitoring import detect_platform


_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal(100)


def round_half_up(value: Decimal) -> float:
    return float(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def trending_index(score: int) -> Decimal:
    # One mention contributes score/100, kept exact until the final rounding.
    return Decimal(score) / _HUNDRED


def build_sparkline(
    sightings: Iterable[SightingCandidate],
    window_days: int,
    *,
    today: date,
) -> list[SparklinePoint]:
    # One bucket per calendar day in [today - window, today], zero-filled.
    start = today - timedelta(days=window_days)
    buckets: dict[date, Decimal] = {start + timedelta(days=offset): Decimal(0) for offset in range(window_days + 1)}
    for sighting in sightings:
        day = ensure_utc(sighting.observed_at).date()
        if day in buckets:
            buckets[day] += trending_index(sighting.score)
    return [SparklinePoint(date=day.isoformat(), value=round_half_up(total)) for day, total in sorted(buckets.items())]


def compute_trend_summary(
    sightings: Sequence[SightingCandidate],
    windows: Sequence[int] | None = None,
    *,
    min_score: int,
    today: date | None = None,
) -> TrendSummary:
    """Aggregate stored sightings into totals and per-window daily series.

    Recomputed from the raw sightings on every call and never stored, so two
    calls over the same sightings return identical values whatever their
    order. Sightings below ``min_score`` are ignored everywhere.
    """
    windows = list(windows) if windows is not None else list(get_settings().trend_windows)
    today = today or utc_now().date()
    qualifying = [sighting for sighting in sightings if sighting.score >= min_score]

    # Distinct URLs so re-crawls of one page count once.
    urls = {sighting.url for sighting in qualifying}
    sources = {sighting.source for sighting in qualifying}
    platforms = {detect_platform(sighting.url) for sighting in qualifying}

    if qualifying:
        total = sum((Decimal(sighting.score) for sighting in qualifying), Decimal(0))
        avg_score = round_half_up(total / Decimal(len(qualifying)))
    else:
        avg_score = 0.0

    sparklines: dict[int, list[SparklinePoint]] = {}
    for window in windows:
        sparklines[int(window)] = build_sparkline(qualifying, int(window), today=today)

    return TrendSummary(
        total_spotted=len(urls),
        source_count=len(sources),
        platform_count=len(platforms),
        avg_score=avg_score,
        sparklines=sparklines,
    )

