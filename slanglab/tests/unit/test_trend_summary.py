from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
import random

from slanglab.domain.types import SightingCandidate
from slanglab.services.trends import build_sparkline, compute_trend_summary, round_half_up


TODAY = date(2024, 5, 15)


def _sighting(url: str, score: int, day: int, source: str = "web") -> SightingCandidate:
    return SightingCandidate(
        source=source,
        url=url,
        snippet="rizz",
        score=score,
        observed_at=datetime(2024, 5, day, 9, 30, tzinfo=timezone.utc),
    )


SIGHTINGS = [
    _sighting("https://www.tiktok.com/@a/1", 90, 15, source="tiktok.com"),
    _sighting("https://www.tiktok.com/@a/2", 70, 15, source="tiktok.com"),
    _sighting("https://reddit.com/r/slang/1", 65, 12, source="reddit.com"),
    _sighting("https://example.com/blog", 40, 14, source="example.com"),
]


def test_summary_is_deterministic_and_order_independent() -> None:
    first = compute_trend_summary(SIGHTINGS, [7, 30, 90], min_score=60, today=TODAY)
    second = compute_trend_summary(SIGHTINGS, [7, 30, 90], min_score=60, today=TODAY)
    shuffled = list(SIGHTINGS)
    random.Random(7).shuffle(shuffled)
    third = compute_trend_summary(shuffled, [7, 30, 90], min_score=60, today=TODAY)
    assert first == second == third
    assert first.to_dict() == third.to_dict()


def test_summary_totals_ignore_low_scores() -> None:
    summary = compute_trend_summary(SIGHTINGS, [7], min_score=60, today=TODAY)
    assert summary.total_spotted == 3
    assert summary.source_count == 2
    assert summary.platform_count == 2
    assert summary.avg_score == 75.0


def test_sparkline_buckets_are_zero_filled_per_day() -> None:
    summary = compute_trend_summary(SIGHTINGS, [7], min_score=60, today=TODAY)
    points = summary.sparklines[7]
    assert len(points) == 8
    assert points[0].date == "2024-05-08"
    assert points[-1].date == "2024-05-15"
    by_date = {point.date: point.value for point in points}
    assert by_date["2024-05-15"] == 1.6
    assert by_date["2024-05-12"] == 0.65
    # Below-threshold sighting on the 14th never reaches a bucket.
    assert by_date["2024-05-14"] == 0.0


def test_sightings_outside_the_window_are_dropped() -> None:
    old = [_sighting("https://reddit.com/r/old", 80, 1)]
    points = build_sparkline(old, 7, today=TODAY)
    assert all(point.value == 0.0 for point in points)


def test_empty_history_has_zero_totals() -> None:
    summary = compute_trend_summary([], [30], min_score=60, today=TODAY)
    assert summary.total_spotted == 0
    assert summary.avg_score == 0.0
    assert len(summary.sparklines[30]) == 31


def test_recrawled_url_counts_once() -> None:
    recrawl = SIGHTINGS + [_sighting("https://www.tiktok.com/@a/1", 90, 13, source="tiktok.com")]
    summary = compute_trend_summary(recrawl, [7], min_score=60, today=TODAY)
    assert summary.total_spotted == 3


def test_round_half_up() -> None:
    assert round_half_up(Decimal("0.125")) == 0.13
    assert round_half_up(Decimal("2.675")) == 2.68
    assert round_half_up(Decimal("1")) == 1.0
