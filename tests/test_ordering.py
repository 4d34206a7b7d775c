from __future__ import annotations

from datetime import date

from apps.core.models import EpisodeSummary
from apps.tracker.ordering import BackfillChoice, EpisodeOrdering, PendingConfirmation


def _ordering() -> EpisodeOrdering:
    # unsorted, with a duplicate
    return EpisodeOrdering([(2, 1), (1, 2), (1, 1), (2, 3), (1, 3), (2, 2), (1, 1)])


def test_keys_are_sorted_by_season_then_episode() -> None:
    ordering = _ordering()
    assert ordering.keys == [(1, 1), (1, 2), (1, 3), (2, 1), (2, 2), (2, 3)]
    assert len(ordering) == 6
    assert (2, 2) in ordering
    assert (3, 1) not in ordering


def test_accepts_catalog_episode_summaries() -> None:
    ordering = EpisodeOrdering([
        EpisodeSummary(season_number=1, episode_number=2, name="B"),
        EpisodeSummary(season_number=1, episode_number=1, name="A"),
    ])
    assert ordering.keys == [(1, 1), (1, 2)]


def test_next_unwatched_is_minimum_of_complement() -> None:
    ordering = _ordering()
    assert ordering.next_unwatched(set()) == (1, 1)
    assert ordering.next_unwatched({(1, 1), (1, 2), (2, 1)}) == (1, 3)
    assert ordering.next_unwatched(set(ordering.keys)) is None


def test_previous_keys_cross_season_boundary() -> None:
    ordering = _ordering()
    assert ordering.previous_keys_of(1, 1) == []
    assert ordering.previous_keys_of(2, 1) == [(1, 1), (1, 2), (1, 3)]
    assert ordering.previous_keys_of(2, 3) == [(1, 1), (1, 2), (1, 3), (2, 1), (2, 2)]


def test_missing_before_skips_watched_keys() -> None:
    ordering = _ordering()
    assert ordering.missing_before(2, 3, {(1, 2), (2, 1)}) == [(1, 1), (1, 3), (2, 2)]
    assert ordering.missing_before(1, 3, {(1, 1), (1, 2)}) == []


def test_pending_confirmation_keys_for_each_choice() -> None:
    pending = PendingConfirmation(
        user_id=1,
        tmdb_id=9,
        season_number=2,
        episode_number=1,
        watched_at=date(2024, 5, 1),
        missing=[(1, 1), (1, 2)],
    )
    assert pending.keys_for(BackfillChoice.CURRENT_ONLY) == [(2, 1)]
    assert pending.keys_for(BackfillChoice.CURRENT_AND_PREVIOUS) == [(1, 1), (1, 2), (2, 1)]
