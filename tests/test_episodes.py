"""Behavior tests for boundary detection and episode pairing."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from data_ops.episodes import Episode, EpisodeStatus, detect_boundaries, find_episodes

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _series(states: list[bool], step_minutes: int = 10) -> list[tuple[datetime, bool]]:
    return [(T0 + timedelta(minutes=i * step_minutes), s) for i, s in enumerate(states)]


def test_boundaries_match_state_changes_on_random_series() -> None:
    """Starts are on-transitions (or a leading on), ends are off-transitions."""
    rng = random.Random(7)
    for _ in range(50):
        states = [rng.random() < 0.5 for _ in range(rng.randint(1, 40))]
        series = _series(states)
        starts, ends = detect_boundaries(series)

        expected_starts = [
            series[i][0] for i, s in enumerate(states)
            if s and (i == 0 or not states[i - 1])
        ]
        expected_ends = [
            series[i][0] for i, s in enumerate(states)
            if not s and i > 0 and states[i - 1]
        ]
        assert [t.to_pydatetime() for t in starts] == expected_starts
        assert [t.to_pydatetime() for t in ends] == expected_ends


def test_every_completed_episode_has_matching_duration() -> None:
    rng = random.Random(11)
    states = [rng.random() < 0.4 for _ in range(200)]
    for episode in find_episodes(_series(states, step_minutes=3), limit=None):
        if episode.status is EpisodeStatus.COMPLETED:
            assert episode.end_time > episode.start_time
            assert episode.duration_ms == (episode.end_time - episode.start_time) // timedelta(milliseconds=1)
        else:
            assert episode.end_time is None
            assert episode.duration_ms is None


def test_at_most_one_active_episode_and_it_is_the_newest() -> None:
    episodes = find_episodes(_series([True, False, True, False, True, True]), limit=None)
    active = [e for e in episodes if e.status is EpisodeStatus.ACTIVE]
    assert len(active) == 1
    assert episodes[0] is active[0]
    assert active[0].start_time == T0 + timedelta(minutes=40)


def test_empty_series_yields_no_episodes() -> None:
    assert find_episodes([]) == []


def test_all_true_series_is_one_active_episode_from_first_point() -> None:
    episodes = find_episodes(_series([True, True, True]), regimen="anchor")
    assert len(episodes) == 1
    assert episodes[0].status is EpisodeStatus.ACTIVE
    assert episodes[0].start_time == T0
    assert episodes[0].regimen == "anchor"


def test_all_false_series_yields_no_episodes() -> None:
    assert find_episodes(_series([False, False, False])) == []


def test_episodes_are_newest_first_and_limited() -> None:
    states = [True, False] * 8
    episodes = find_episodes(_series(states), limit=3)
    assert len(episodes) == 3
    starts = [e.start_time for e in episodes]
    assert starts == sorted(starts, reverse=True)
    assert all(e.status is EpisodeStatus.COMPLETED for e in episodes)


def test_iso_string_timestamps_and_unordered_input() -> None:
    series = [
        ("2024-06-01T00:20:00Z", "true"),
        ("2024-06-01T00:00:00Z", "off"),
        ("2024-06-01T00:10:00Z", 1),
        ("2024-06-01T00:30:00Z", 0),
    ]
    (episode,) = find_episodes(series, paths=["navigation.anchor.position"])
    assert episode.start_time == T0 + timedelta(minutes=10)
    assert episode.end_time == T0 + timedelta(minutes=30)
    assert episode.duration_ms == 20 * 60 * 1000
    assert episode.to_dict()["paths"] == ["navigation.anchor.position"]
    assert episode.to_dict()["status"] == "completed"


def test_unknown_values_do_not_start_episodes() -> None:
    series = _series([None, "maybe", True, None])  # type: ignore[list-item]
    (episode,) = find_episodes(series)
    assert episode.start_time == T0 + timedelta(minutes=20)
    assert episode.status is EpisodeStatus.ACTIVE


def test_each_start_pairs_with_earliest_later_end() -> None:
    """Two starts separated by an unknown point both claim the same end."""
    series = _series([True, None, True, False])  # type: ignore[list-item]
    episodes = find_episodes(series, limit=None)
    assert len(episodes) == 2
    assert {e.end_time for e in episodes} == {T0 + timedelta(minutes=30)}


def test_episode_rejects_inconsistent_fields() -> None:
    with pytest.raises(ValueError):
        Episode("r", T0, None, EpisodeStatus.COMPLETED, None)
    with pytest.raises(ValueError):
        Episode("r", T0, None, EpisodeStatus.ACTIVE, 5)
    with pytest.raises(ValueError):
        Episode("r", T0, T0 + timedelta(seconds=1), EpisodeStatus.ACTIVE, 1000)
    with pytest.raises(ValueError):
        Episode("r", T0, T0 + timedelta(seconds=1), EpisodeStatus.COMPLETED, 999)
    with pytest.raises(ValueError):
        Episode("r", T0 + timedelta(seconds=1), T0, EpisodeStatus.COMPLETED, -1000)
