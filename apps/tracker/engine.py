"""
Per-user watch-progress engine.

Holds the user's current set of watched units (as loaded through the sync
gateway), gates episode marks through the backfill policy, serializes
toggles per title, and exposes the reconciliation and statistics
projections over that set.

The unit set is never patched in place: every change swaps in a new
read-only mapping, so a projection computed from an older snapshot can
not be affected by a later commit.
"""
import logging
from contextlib import contextmanager
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple
from sqlmodel import SQLModel, Field
from apps.core.models import MediaKind, EpisodeSummary, SearchResult
from apps.tracker.exceptions import ConcurrencyRejected
from apps.tracker.models import (
    EpisodeKey, WatchedEvent, WatchedUnit, validate_unit, resolve_watched_at, episode_unit, movie_unit,
)
from apps.tracker.ordering import EpisodeOrdering, PendingConfirmation, BackfillChoice
from apps.tracker.reconcile import Reconciliation, reconcile
from apps.tracker.stats import DayBucket, MonthGrid, aggregate, build_month_grid

logger = logging.getLogger(__name__)

# (media_type, tmdb_id, season_number, episode_number)
UnitKey = Tuple[str, int, int, int]

class MarkOutcome(str, Enum):
    COMMITTED = "committed"
    PARTIAL = "partial"     # some keys of a batch were stored
    FAILED = "failed"       # nothing was stored or removed
    PENDING = "pending"     # waiting for a backfill decision
    DISMISSED = "dismissed"
    REMOVED = "removed"
    IGNORED = "ignored"     # title busy, or nothing left to mark

class MarkResult(SQLModel):
    outcome: MarkOutcome
    committed: List[Tuple[int, int]] = Field(default_factory=list)
    failed: List[Tuple[int, int]] = Field(default_factory=list)
    pending: Optional[PendingConfirmation] = None

class RequestTokens:
    """Monotonic request tokens per resource; only the latest token's response may be applied."""

    def __init__(self):
        self._latest: Dict[str, int] = {}

    def issue(self, resource: str) -> int:
        token = self._latest.get(resource, 0) + 1
        self._latest[resource] = token
        return token

    def is_current(self, resource: str, token: int) -> bool:
        return self._latest.get(resource) == token

def _unit_key(media_type: MediaKind, tmdb_id: int, season_number: int = 0, episode_number: int = 0) -> UnitKey:
    return (MediaKind(media_type).value, tmdb_id, season_number, episode_number)

class WatchProgressEngine:
    def __init__(self, user_id: int, gateway, catalog, today: Optional[Callable[[], date]] = None):
        self.user_id = user_id
        self.gateway = gateway
        self.catalog = catalog
        self._today = today or date.today

        self._units: Mapping[UnitKey, Optional[str]] = MappingProxyType({})
        self._in_flight: Set[Tuple[str, int]] = set()

        self.tokens = RequestTokens()
        self.selected_series_id: Optional[int] = None
        self.selected_episodes: List[EpisodeSummary] = []
        self.search_results: List[SearchResult] = []

    # --- Unit set ---

    async def load(self) -> None:
        """
        Replaces the unit set with what the persistence API holds.
        A read failure raises CollaboratorUnavailable and keeps the old set.
        """
        tv_events = await self.gateway.fetch_watched(self.user_id, MediaKind.TV)
        movie_events = await self.gateway.fetch_watched(self.user_id, MediaKind.MOVIE)

        units: Dict[UnitKey, Optional[str]] = {}
        for event in tv_events + movie_events:
            # The API lists newest first, so the first date seen per key wins
            units.setdefault(
                _unit_key(event.media_type, event.tmdb_id, event.season_number, event.episode_number),
                event.watched_at,
            )
        self._units = MappingProxyType(units)
        logger.info(f"Loaded {len(units)} watched units for user {self.user_id}")

    def _replace(self, upserts: Optional[Dict[UnitKey, Optional[str]]] = None,
                 removals: Iterable[UnitKey] = ()) -> None:
        units = dict(self._units)
        units.update(upserts or {})
        for key in removals:
            units.pop(key, None)
        self._units = MappingProxyType(units)

    def events(self, media_type: Optional[MediaKind] = None) -> List[WatchedEvent]:
        return [
            WatchedEvent(
                user_id=self.user_id,
                media_type=MediaKind(kind),
                tmdb_id=tmdb_id,
                season_number=season,
                episode_number=episode,
                watched_at=watched_at,
            )
            for (kind, tmdb_id, season, episode), watched_at in self._units.items()
            if media_type is None or kind == MediaKind(media_type).value
        ]

    def watched_keys(self, tmdb_id: int) -> FrozenSet[EpisodeKey]:
        return frozenset(
            (season, episode)
            for (kind, series_id, season, episode) in self._units
            if kind == MediaKind.TV.value and series_id == tmdb_id and season > 0 and episode > 0
        )

    def is_watched(self, media_type: MediaKind, tmdb_id: int, season_number: int = 0, episode_number: int = 0) -> bool:
        return _unit_key(media_type, tmdb_id, season_number, episode_number) in self._units

    def watched_date(self, media_type: MediaKind, tmdb_id: int, season_number: int = 0,
                     episode_number: int = 0) -> Optional[str]:
        return self._units.get(_unit_key(media_type, tmdb_id, season_number, episode_number))

    # --- Serialization ---

    def is_busy(self, media_type: MediaKind, tmdb_id: int) -> bool:
        return (MediaKind(media_type).value, tmdb_id) in self._in_flight

    @contextmanager
    def _serialized(self, media_type: MediaKind, tmdb_id: int):
        slot = (MediaKind(media_type).value, tmdb_id)
        if slot in self._in_flight:
            raise ConcurrencyRejected(f"{slot[0]}:{tmdb_id} already has an operation in flight")
        self._in_flight.add(slot)
        try:
            yield
        finally:
            self._in_flight.discard(slot)

    def _ignored(self, media_type: MediaKind, tmdb_id: int) -> MarkResult:
        logger.debug(f"Ignoring request for busy {MediaKind(media_type).value}:{tmdb_id}")
        return MarkResult(outcome=MarkOutcome.IGNORED)

    # --- Series episodes ---

    async def mark_watched(self, tmdb_id: int, season_number: int, episode_number: int,
                           ordering: EpisodeOrdering, watched_at: Optional[date] = None) -> MarkResult:
        """
        Commits the episode right away when nothing before it is missing,
        otherwise returns a PENDING result carrying the missing keys.
        """
        unit = validate_unit(episode_unit(self.user_id, tmdb_id, season_number, episode_number))
        watched_at = resolve_watched_at(watched_at, self._today())

        if self.is_busy(MediaKind.TV, tmdb_id):
            return self._ignored(MediaKind.TV, tmdb_id)

        missing = ordering.missing_before(season_number, episode_number, self.watched_keys(tmdb_id))
        if not missing:
            return await self._commit_episodes(tmdb_id, [unit.episode_key], watched_at)

        logger.info(f"S{season_number}E{episode_number} of series {tmdb_id} has "
                    f"{len(missing)} earlier unwatched episodes, asking before commit")
        pending = PendingConfirmation(
            user_id=self.user_id,
            tmdb_id=tmdb_id,
            season_number=season_number,
            episode_number=episode_number,
            watched_at=watched_at,
            missing=missing,
        )
        return MarkResult(outcome=MarkOutcome.PENDING, pending=pending)

    async def resolve_confirmation(self, pending: PendingConfirmation,
                                   choice: Optional[BackfillChoice]) -> MarkResult:
        """Applies the user's answer; ``None`` dismisses the prompt without any change."""
        if choice is None:
            return MarkResult(outcome=MarkOutcome.DISMISSED)
        return await self._commit_episodes(pending.tmdb_id, pending.keys_for(BackfillChoice(choice)),
                                           pending.watched_at)

    async def toggle_episode(self, tmdb_id: int, season_number: int, episode_number: int,
                             ordering: EpisodeOrdering, watched_at: Optional[date] = None) -> MarkResult:
        unit = validate_unit(episode_unit(self.user_id, tmdb_id, season_number, episode_number))
        if self.is_busy(MediaKind.TV, tmdb_id):
            return self._ignored(MediaKind.TV, tmdb_id)

        if self.is_watched(MediaKind.TV, tmdb_id, season_number, episode_number):
            return await self._retract(unit)
        return await self.mark_watched(tmdb_id, season_number, episode_number, ordering, watched_at)

    async def change_watched_date(self, tmdb_id: int, season_number: int, episode_number: int,
                                  ordering: EpisodeOrdering, watched_at: date) -> MarkResult:
        """Re-dates a watched episode in place; an unwatched one goes through mark_watched."""
        validate_unit(episode_unit(self.user_id, tmdb_id, season_number, episode_number))
        if self.is_watched(MediaKind.TV, tmdb_id, season_number, episode_number):
            watched_at = resolve_watched_at(watched_at, self._today())
            return await self._commit_episodes(tmdb_id, [(season_number, episode_number)], watched_at)
        return await self.mark_watched(tmdb_id, season_number, episode_number, ordering, watched_at)

    def next_episode(self, tmdb_id: int, ordering: EpisodeOrdering) -> Optional[EpisodeKey]:
        return ordering.next_unwatched(self.watched_keys(tmdb_id))

    async def mark_next_episode(self, tmdb_id: int, ordering: EpisodeOrdering,
                                watched_at: Optional[date] = None) -> MarkResult:
        key = self.next_episode(tmdb_id, ordering)
        if key is None:
            return MarkResult(outcome=MarkOutcome.IGNORED)
        return await self.mark_watched(tmdb_id, key[0], key[1], ordering, watched_at)

    async def _commit_episodes(self, tmdb_id: int, keys: List[EpisodeKey], watched_at: date) -> MarkResult:
        """Commits key by key; every successful key is folded in as soon as it is stored."""
        committed: List[EpisodeKey] = []
        failed: List[EpisodeKey] = []
        try:
            with self._serialized(MediaKind.TV, tmdb_id):
                for season_number, episode_number in keys:
                    unit = episode_unit(self.user_id, tmdb_id, season_number, episode_number, watched_at)
                    if await self.gateway.commit(unit):
                        committed.append(unit.episode_key)
                        self._replace(upserts={
                            _unit_key(MediaKind.TV, tmdb_id, season_number, episode_number): watched_at.isoformat()
                        })
                    else:
                        failed.append(unit.episode_key)
        except ConcurrencyRejected:
            return self._ignored(MediaKind.TV, tmdb_id)

        if failed:
            logger.warning(f"Series {tmdb_id}: {len(failed)} of {len(keys)} episode commits failed")
        if not committed:
            outcome = MarkOutcome.FAILED
        elif failed:
            outcome = MarkOutcome.PARTIAL
        else:
            outcome = MarkOutcome.COMMITTED
        return MarkResult(outcome=outcome, committed=committed, failed=failed)

    async def _retract(self, unit: WatchedUnit) -> MarkResult:
        try:
            with self._serialized(unit.media_type, unit.tmdb_id):
                if not await self.gateway.retract(unit):
                    return MarkResult(outcome=MarkOutcome.FAILED, failed=[unit.episode_key])
                self._replace(removals=[_unit_key(unit.media_type, unit.tmdb_id, *unit.episode_key)])
        except ConcurrencyRejected:
            return self._ignored(unit.media_type, unit.tmdb_id)
        return MarkResult(outcome=MarkOutcome.REMOVED, committed=[unit.episode_key])

    # --- Movies ---

    async def toggle_movie(self, tmdb_id: int, watched_at: Optional[date] = None) -> MarkResult:
        """
        Movies skip the backfill policy. The flip is applied optimistically
        and rolled back when the persistence API does not confirm it.
        """
        unit = validate_unit(movie_unit(self.user_id, tmdb_id))
        key = _unit_key(MediaKind.MOVIE, tmdb_id)

        try:
            with self._serialized(MediaKind.MOVIE, tmdb_id):
                was_watched = key in self._units
                previous = self._units.get(key)

                if was_watched:
                    self._replace(removals=[key])
                    ok = await self.gateway.retract(unit)
                else:
                    stamp = resolve_watched_at(watched_at, self._today())
                    self._replace(upserts={key: stamp.isoformat()})
                    ok = await self.gateway.commit(movie_unit(self.user_id, tmdb_id, stamp))

                if not ok:
                    logger.warning(f"Rolling back movie {tmdb_id} toggle")
                    if was_watched:
                        self._replace(upserts={key: previous})
                    else:
                        self._replace(removals=[key])
                    return MarkResult(outcome=MarkOutcome.FAILED, failed=[unit.episode_key])
        except ConcurrencyRejected:
            return self._ignored(MediaKind.MOVIE, tmdb_id)

        outcome = MarkOutcome.REMOVED if was_watched else MarkOutcome.COMMITTED
        return MarkResult(outcome=outcome, committed=[unit.episode_key])

    # --- Catalog fetches ---

    async def select_series(self, tmdb_id: int) -> Optional[EpisodeOrdering]:
        """
        Loads the episode listing of the selected series. Returns None when a
        newer selection was made while this one was loading.
        """
        token = self.tokens.issue("series_episodes")
        self.selected_series_id = tmdb_id
        episodes = await self.catalog.get_episodes(tmdb_id)
        if not self.tokens.is_current("series_episodes", token):
            logger.debug(f"Discarding stale episode listing for series {tmdb_id}")
            return None
        self.selected_episodes = episodes
        return EpisodeOrdering(episodes)

    async def search(self, query: str) -> Optional[List[SearchResult]]:
        token = self.tokens.issue("search")
        results = await self.catalog.search(query)
        if not self.tokens.is_current("search", token):
            logger.debug(f"Discarding stale search results for {query!r}")
            return None
        self.search_results = results
        return results

    # --- Projections ---

    async def reconcile(self) -> Reconciliation:
        return await reconcile(self.events(), self.catalog)

    def day_buckets(self) -> Dict[date, DayBucket]:
        return aggregate(self.events(), self._today())

    def month_grid(self, year: int, month: int) -> MonthGrid:
        return build_month_grid(year, month, self.day_buckets(), self._today())
