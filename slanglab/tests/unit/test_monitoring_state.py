from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from slanglab.domain.types import MonitoringState, MonitoringStatus, Platform, SightingCandidate
from slanglab.services.monitoring import (
    detect_platform,
    is_organic_mention,
    merge_platforms,
    record_sighting_batch,
)


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def _sighting(url: str, snippet: str, score: int = 80) -> SightingCandidate:
    return SightingCandidate(source="web", url=url, snippet=snippet, score=score, observed_at=NOW)


def _batch(phrase: str, sightings, prior: MonitoringState, min_score: int = 60):
    return record_sighting_batch(
        phrase,
        sightings,
        prior,
        min_score=min_score,
        now=NOW,
        mention_weight=10,
        trending_threshold=100,
        dormant_after_days=30,
    )


def test_first_find_moves_monitoring_to_spotted() -> None:
    outcome = _batch("rizz", [_sighting("https://www.tiktok.com/@a/1", "he has so much rizz")], MonitoringState())
    assert outcome.found_count == 1
    assert outcome.state.status is MonitoringStatus.SPOTTED
    assert outcome.state.trending_score == 10
    assert outcome.state.times_found == 1
    assert outcome.state.last_found_at == NOW
    assert outcome.state.last_checked_at == NOW


def test_crossing_threshold_moves_to_trending() -> None:
    prior = MonitoringState(status=MonitoringStatus.SPOTTED, trending_score=95)
    outcome = _batch("rizz", [_sighting("https://reddit.com/r/x", "rizz is everywhere")], prior)
    assert outcome.state.trending_score == 105
    assert outcome.state.status is MonitoringStatus.TRENDING


def test_exact_threshold_is_not_trending() -> None:
    prior = MonitoringState(status=MonitoringStatus.SPOTTED, trending_score=90)
    outcome = _batch("rizz", [_sighting("https://reddit.com/r/x", "rizz again")], prior)
    assert outcome.state.trending_score == 100
    assert outcome.state.status is MonitoringStatus.SPOTTED


def test_quiet_spotted_term_goes_dormant_after_thirty_days() -> None:
    prior = MonitoringState(
        status=MonitoringStatus.SPOTTED,
        trending_score=20,
        last_found_at=NOW - timedelta(days=31),
    )
    outcome = _batch("rizz", [], prior)
    assert outcome.state.status is MonitoringStatus.DORMANT
    assert outcome.state.last_found_at == prior.last_found_at
    assert outcome.state.last_checked_at == NOW


def test_recently_found_spotted_term_stays_spotted() -> None:
    prior = MonitoringState(status=MonitoringStatus.SPOTTED, last_found_at=NOW - timedelta(days=10))
    assert _batch("rizz", [], prior).state.status is MonitoringStatus.SPOTTED


def test_dormant_falls_back_to_monitoring_start() -> None:
    prior = MonitoringState(
        status=MonitoringStatus.SPOTTED,
        monitoring_started_at=NOW - timedelta(days=45),
    )
    assert _batch("rizz", [], prior).state.status is MonitoringStatus.DORMANT


def test_trending_is_never_demoted() -> None:
    prior = MonitoringState(
        status=MonitoringStatus.TRENDING,
        trending_score=150,
        last_found_at=NOW - timedelta(days=90),
    )
    assert _batch("rizz", [], prior).state.status is MonitoringStatus.TRENDING


def test_dormant_stays_dormant_below_threshold() -> None:
    prior = MonitoringState(status=MonitoringStatus.DORMANT, trending_score=30)
    outcome = _batch("rizz", [_sighting("https://x.com/a/1", "rizz is back")], prior)
    assert outcome.state.status is MonitoringStatus.DORMANT
    assert outcome.state.trending_score == 40


def test_dormant_revives_to_trending_above_threshold() -> None:
    prior = MonitoringState(status=MonitoringStatus.DORMANT, trending_score=95)
    outcome = _batch("rizz", [_sighting("https://x.com/a/1", "rizz is back")], prior)
    assert outcome.state.status is MonitoringStatus.TRENDING


def test_low_score_sightings_never_count() -> None:
    sightings = [
        _sighting("https://www.tiktok.com/@a/1", "rizz rizz rizz", score=59),
        _sighting("https://youtube.com/watch?v=1", "peak rizz", score=10),
    ]
    outcome = _batch("rizz", sightings, MonitoringState(), min_score=60)
    assert outcome.found_count == 0
    assert outcome.accepted == 0
    assert outcome.rejected_below_threshold == 2
    assert outcome.state.trending_score == 0
    assert outcome.state.platforms == ()
    assert outcome.state.status is MonitoringStatus.MONITORING


def test_definition_context_is_not_a_find_but_records_platform() -> None:
    sightings = [_sighting("https://www.urbandictionary.com/define.php?term=rizz", "rizz: definition and meaning")]
    outcome = _batch("rizz", sightings, MonitoringState())
    assert outcome.found_count == 0
    assert outcome.state.platforms == (Platform.WEB,)
    assert outcome.state.status is MonitoringStatus.MONITORING


def test_prior_state_is_not_mutated() -> None:
    prior = MonitoringState(platforms=(Platform.REDDIT,))
    _batch("rizz", [_sighting("https://www.tiktok.com/@a/1", "rizz")], prior)
    assert prior.platforms == (Platform.REDDIT,)
    assert prior.trending_score == 0


@pytest.mark.parametrize(
    "url,platform",
    [
        ("https://www.tiktok.com/@user/video/1", Platform.TIKTOK),
        ("https://m.tiktok.com/v/1", Platform.TIKTOK),
        ("https://x.com/user/status/1", Platform.TWITTER),
        ("https://twitter.com/user", Platform.TWITTER),
        ("https://old.reddit.com/r/slang", Platform.REDDIT),
        ("https://youtu.be/abc", Platform.YOUTUBE),
        ("https://www.instagram.com/p/1", Platform.INSTAGRAM),
        ("https://nottiktok.com/a", Platform.WEB),
        ("https://tiktok.com.evil.example/a", Platform.WEB),
        ("not a url", Platform.WEB),
    ],
)
def test_detect_platform_matches_exact_hosts(url: str, platform: Platform) -> None:
    assert detect_platform(url) is platform


def test_merge_platforms_is_an_ordered_set() -> None:
    merged = merge_platforms((Platform.REDDIT,), [Platform.TIKTOK, Platform.REDDIT, Platform.TIKTOK])
    assert merged == (Platform.REDDIT, Platform.TIKTOK)


def test_organic_mention_heuristic() -> None:
    assert is_organic_mention("Rizz", "that RIZZ though")
    assert not is_organic_mention("rizz", "no mention here")
    assert not is_organic_mention("rizz", "Rizz meaning explained")
