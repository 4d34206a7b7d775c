"""
Reconciliation of watched events against catalog totals.

Everything here is a pure projection of (events, catalog summaries); results
are rebuilt from scratch on every call and never patched in place.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Sequence
from sqlmodel import SQLModel, Field
from config import settings
from apps.core.models import MediaKind, TvSummary, MovieSummary
from apps.tracker.exceptions import CollaboratorUnavailable
from apps.tracker.models import EpisodeKey, WatchedEvent, MOVIE_SENTINEL

logger = logging.getLogger(__name__)

class SeriesProgress(SQLModel):
    tmdb_id: int
    name: str
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    watched_episodes: int
    total_episodes: Optional[int] = None
    remaining_episodes: Optional[int] = None
    average_episode_runtime: Optional[int] = None

class MovieHistoryEntry(SQLModel):
    tmdb_id: int
    title: str
    poster_url: Optional[str] = None
    runtime: Optional[int] = None
    watched_at: Optional[str] = None

class WatchTotals(SQLModel):
    episodes_watched: int = 0
    series_minutes: int = 0
    movies_watched: int = 0
    movie_minutes: int = 0

class Reconciliation(SQLModel):
    series: List[SeriesProgress] = Field(default_factory=list)
    movies: List[MovieHistoryEntry] = Field(default_factory=list)
    totals: WatchTotals = Field(default_factory=WatchTotals)

# --- Grouping ---

def group_series_episodes(events: Iterable[WatchedEvent]) -> Dict[int, Set[EpisodeKey]]:
    """Distinct (season, episode) keys per series, in first-seen series order."""
    watched: Dict[int, Set[EpisodeKey]] = {}
    for event in events:
        if event.media_type != MediaKind.TV:
            continue
        if event.season_number <= 0 or event.episode_number <= 0:
            continue
        watched.setdefault(event.tmdb_id, set()).add(event.episode_key)
    return watched

def unique_movie_events(events: Iterable[WatchedEvent]) -> Dict[int, WatchedEvent]:
    """First event seen per movie id (presence, not count)."""
    movies: Dict[int, WatchedEvent] = {}
    for event in events:
        if event.media_type != MediaKind.MOVIE or event.episode_key != MOVIE_SENTINEL:
            continue
        movies.setdefault(event.tmdb_id, event)
    return movies

def remaining_episodes(total_episodes: Optional[int], watched_episodes: int) -> Optional[int]:
    if not total_episodes or total_episodes <= 0:
        return None
    return max(total_episodes - watched_episodes, 0)

# --- Catalog resolution ---

async def resolve_summaries(
    ids: Sequence[int],
    fetch_batch: Callable[[List[int]], Awaitable[List[Any]]],
    batch_size: Optional[int] = None,
) -> Dict[int, Any]:
    """
    Resolves catalog summaries in batches of at most ``batch_size`` ids.
    A failing batch only loses the metadata of its own ids.
    """
    batch_size = batch_size or settings.CATALOG_BATCH_LIMIT
    resolved: Dict[int, Any] = {}
    for start in range(0, len(ids), batch_size):
        batch = list(ids[start:start + batch_size])
        try:
            summaries = await fetch_batch(batch)
        except CollaboratorUnavailable as e:
            logger.warning(f"Catalog batch {batch} unavailable: {e}")
            continue
        for summary in summaries or []:
            resolved[summary.id] = summary
    return resolved

# --- Projections ---

def build_series_progress(
    watched_per_series: Dict[int, Set[EpisodeKey]],
    summaries: Dict[int, TvSummary],
) -> List[SeriesProgress]:
    progress = []
    for tmdb_id, keys in watched_per_series.items():
        summary = summaries.get(tmdb_id)
        watched_count = len(keys)
        total = summary.total_episodes if summary and summary.total_episodes and summary.total_episodes > 0 else None
        progress.append(SeriesProgress(
            tmdb_id=tmdb_id,
            name=summary.name if summary else f"Series {tmdb_id}",
            poster_url=summary.poster_url if summary else None,
            backdrop_url=summary.backdrop_url if summary else None,
            watched_episodes=watched_count,
            total_episodes=total,
            remaining_episodes=remaining_episodes(total, watched_count),
            average_episode_runtime=summary.average_episode_runtime if summary else None,
        ))
    return sort_series_progress(progress)

def sort_series_progress(progress: Sequence[SeriesProgress]) -> List[SeriesProgress]:
    """
    Known remaining first (fewest remaining, then most watched), unknown
    remaining last in alphabetical order.
    """
    known = [p for p in progress if p.remaining_episodes is not None]
    unknown = [p for p in progress if p.remaining_episodes is None]
    known.sort(key=lambda p: (p.remaining_episodes, -p.watched_episodes))
    unknown.sort(key=lambda p: p.name.casefold())
    return known + unknown

def build_movie_history(
    movie_events: Dict[int, WatchedEvent],
    summaries: Dict[int, MovieSummary],
) -> List[MovieHistoryEntry]:
    history = []
    for tmdb_id, event in movie_events.items():
        summary = summaries.get(tmdb_id)
        history.append(MovieHistoryEntry(
            tmdb_id=tmdb_id,
            title=summary.title if summary else f"Movie {tmdb_id}",
            poster_url=summary.poster_url if summary else None,
            runtime=summary.runtime if summary else None,
            watched_at=event.watched_at,
        ))
    return history

def watch_totals(
    tv_events: Sequence[WatchedEvent],
    series: Sequence[SeriesProgress],
    movies: Sequence[MovieHistoryEntry],
) -> WatchTotals:
    series_minutes = sum(
        p.average_episode_runtime * p.watched_episodes
        for p in series if p.average_episode_runtime and p.average_episode_runtime > 0
    )
    movie_minutes = sum(m.runtime for m in movies if m.runtime and m.runtime > 0)
    return WatchTotals(
        episodes_watched=len(tv_events),
        series_minutes=series_minutes,
        movies_watched=len(movies),
        movie_minutes=movie_minutes,
    )

def format_minutes(total_minutes: int) -> str:
    if total_minutes <= 0:
        return "0 min"
    hours, minutes = divmod(total_minutes, 60)
    if not hours:
        return f"{minutes} min"
    if not minutes:
        return f"{hours}h"
    return f"{hours}h {minutes}min"

def pick_selected_series(progress: Sequence[SeriesProgress], selected_id: Optional[int] = None) -> Optional[SeriesProgress]:
    """Keeps the current selection while it still has episodes left, else the first such series."""
    candidates = [p for p in progress if p.remaining_episodes is not None and p.remaining_episodes > 0]
    if not candidates:
        return None
    return next((p for p in candidates if p.tmdb_id == selected_id), candidates[0])

async def reconcile(events: Iterable[WatchedEvent], catalog) -> Reconciliation:
    """
    Builds series progress and movie history for one user's watched events.

    ``catalog`` needs ``get_tv_summaries(ids)`` and ``get_movie_summaries(ids)``
    (TMDBService or anything shaped like it).
    """
    events = list(events)
    tv_events = [
        e for e in events
        if e.media_type == MediaKind.TV and e.season_number > 0 and e.episode_number > 0
    ]

    watched_per_series = group_series_episodes(tv_events)
    movie_events = unique_movie_events(events)

    tv_summaries = await resolve_summaries(list(watched_per_series), catalog.get_tv_summaries)
    movie_summaries = await resolve_summaries(list(movie_events), catalog.get_movie_summaries)

    series = build_series_progress(watched_per_series, tv_summaries)
    movies = build_movie_history(movie_events, movie_summaries)
    logger.info(f"Reconciled {len(series)} series and {len(movies)} movies "
                f"({len(tv_summaries)}/{len(watched_per_series)} series resolved)")

    return Reconciliation(series=series, movies=movies, totals=watch_totals(tv_events, series, movies))
