from __future__ import annotations

import pytest

from apps.core.models import MediaKind, MovieSummary, TvSummary
from apps.tracker.models import WatchedEvent
from apps.tracker.reconcile import (
    SeriesProgress,
    build_series_progress,
    format_minutes,
    pick_selected_series,
    reconcile,
    remaining_episodes,
    resolve_summaries,
    sort_series_progress,
)


def ep(tmdb_id: int, season: int, episode: int, watched_at: str = "2024-01-01") -> WatchedEvent:
    return WatchedEvent(media_type=MediaKind.TV, tmdb_id=tmdb_id, season_number=season,
                        episode_number=episode, watched_at=watched_at)


def movie(tmdb_id: int, watched_at: str = "2024-01-01") -> WatchedEvent:
    return WatchedEvent(media_type=MediaKind.MOVIE, tmdb_id=tmdb_id, watched_at=watched_at)


@pytest.mark.anyio
async def test_duplicate_events_for_one_key_count_once(make_catalog) -> None:
    catalog = make_catalog(tv=[TvSummary(id=1, name="Dark", total_episodes=26)])
    result = await reconcile([ep(1, 1, 1), ep(1, 1, 1)], catalog)

    assert len(result.series) == 1
    assert result.series[0].watched_episodes == 1
    assert result.series[0].remaining_episodes == 25


@pytest.mark.anyio
async def test_remaining_is_total_minus_distinct_watched(make_catalog) -> None:
    catalog = make_catalog(tv=[TvSummary(id=1, name="Dark", total_episodes=10)])
    events = [ep(1, 1, n) for n in range(1, 8)]
    result = await reconcile(events, catalog)
    assert result.series[0].remaining_episodes == 3


@pytest.mark.anyio
async def test_unknown_total_sorts_after_known_and_is_null(make_catalog) -> None:
    catalog = make_catalog(tv=[
        TvSummary(id=1, name="Severance", total_episodes=19),
        TvSummary(id=2, name="Zorro"),
        TvSummary(id=3, name="Andor"),
    ])
    events = [ep(2, 1, 1), ep(1, 1, 1), ep(3, 1, 1)]
    result = await reconcile(events, catalog)

    assert [p.tmdb_id for p in result.series] == [1, 3, 2]
    assert result.series[1].total_episodes is None
    assert result.series[1].remaining_episodes is None


@pytest.mark.anyio
async def test_failed_catalog_batch_still_emits_records(make_catalog) -> None:
    catalog = make_catalog(
        tv=[TvSummary(id=1, name="Dark", total_episodes=26)],
        movies=[MovieSummary(id=7, title="Heat", runtime=170)],
        failing_ids=[1, 7],
    )
    result = await reconcile([ep(1, 1, 1), movie(7)], catalog)

    assert result.series[0].name == "Series 1"
    assert result.series[0].poster_url is None
    assert result.series[0].remaining_episodes is None
    assert result.series[0].watched_episodes == 1
    assert result.movies[0].title == "Movie 7"


@pytest.mark.anyio
async def test_summaries_are_resolved_in_batches_of_forty(make_catalog) -> None:
    catalog = make_catalog(tv=[TvSummary(id=i, name=f"S{i}", total_episodes=5) for i in range(1, 86)])
    events = [ep(i, 1, 1) for i in range(1, 86)]
    result = await reconcile(events, catalog)

    assert [len(b) for b in catalog.tv_batches] == [40, 40, 5]
    assert len(result.series) == 85
    assert all(p.remaining_episodes == 4 for p in result.series)


@pytest.mark.anyio
async def test_only_failing_batch_loses_metadata(make_catalog) -> None:
    catalog = make_catalog(
        tv=[TvSummary(id=i, name=f"S{i}", total_episodes=5) for i in range(1, 46)],
        failing_ids=[42],
    )
    result = await resolve_summaries(list(range(1, 46)), catalog.get_tv_summaries)
    assert sorted(result) == list(range(1, 41))


@pytest.mark.anyio
async def test_movie_history_deduplicates_by_id_and_keeps_caller_order(make_catalog) -> None:
    catalog = make_catalog(movies=[
        MovieSummary(id=7, title="Heat", runtime=170),
        MovieSummary(id=8, title="Ronin", runtime=122),
    ])
    result = await reconcile([movie(8, "2024-03-01"), movie(7, "2024-02-01"), movie(8, "2024-01-01")], catalog)

    assert [m.tmdb_id for m in result.movies] == [8, 7]
    assert result.movies[0].watched_at == "2024-03-01"
    assert result.totals.movies_watched == 2
    assert result.totals.movie_minutes == 292


@pytest.mark.anyio
async def test_series_minutes_use_known_runtime_only(make_catalog) -> None:
    catalog = make_catalog(tv=[
        TvSummary(id=1, name="Dark", total_episodes=26, average_episode_runtime=50),
        TvSummary(id=2, name="Andor", total_episodes=12),
    ])
    result = await reconcile([ep(1, 1, 1), ep(1, 1, 2), ep(2, 1, 1)], catalog)

    assert result.totals.episodes_watched == 3
    assert result.totals.series_minutes == 100


def test_remaining_episodes_is_clamped_and_null_without_total() -> None:
    assert remaining_episodes(10, 12) == 0
    assert remaining_episodes(None, 3) is None
    assert remaining_episodes(0, 3) is None


def test_sort_breaks_remaining_ties_by_most_watched() -> None:
    a = SeriesProgress(tmdb_id=1, name="A", watched_episodes=2, total_episodes=5, remaining_episodes=3)
    b = SeriesProgress(tmdb_id=2, name="B", watched_episodes=7, total_episodes=10, remaining_episodes=3)
    c = SeriesProgress(tmdb_id=3, name="C", watched_episodes=1, total_episodes=2, remaining_episodes=1)
    assert [p.tmdb_id for p in sort_series_progress([a, b, c])] == [3, 2, 1]


def test_pick_selected_series_keeps_current_selection() -> None:
    done = SeriesProgress(tmdb_id=1, name="A", watched_episodes=5, total_episodes=5, remaining_episodes=0)
    first = SeriesProgress(tmdb_id=2, name="B", watched_episodes=1, total_episodes=3, remaining_episodes=2)
    second = SeriesProgress(tmdb_id=3, name="C", watched_episodes=1, total_episodes=5, remaining_episodes=4)
    progress = [done, first, second]

    assert pick_selected_series(progress).tmdb_id == 2
    assert pick_selected_series(progress, 3).tmdb_id == 3
    assert pick_selected_series(progress, 1).tmdb_id == 2
    assert pick_selected_series([done]) is None


def test_format_minutes() -> None:
    assert format_minutes(0) == "0 min"
    assert format_minutes(45) == "45 min"
    assert format_minutes(120) == "2h"
    assert format_minutes(125) == "2h 5min"


def test_zero_total_is_treated_as_unknown() -> None:
    progress = build_series_progress({1: {(1, 1)}}, {1: TvSummary(id=1, name="X", total_episodes=0)})
    assert progress[0].total_episodes is None
    assert progress[0].remaining_episodes is None
